"""Game configuration constants and settings."""

import os

TIMEZONE = os.getenv("TIMEZONE", "America/Los_Angeles")

DATABASE_PATH = os.getenv("MAFIA_DATABASE_PATH", "mafia_nights.db")
DATABASE_TIMEOUT = 10.0  # seconds to wait for the write lock

# Trials
TRIAL_WINDOW_HOURS = int(os.getenv("TRIAL_WINDOW_HOURS", "24"))
TRIAL_POLL_MINUTES = int(os.getenv("TRIAL_POLL_MINUTES", "5"))

# Night actions
MAX_KILL_TARGETS = int(os.getenv("MAX_KILL_TARGETS", "1"))

# Optimistic concurrency
MAX_CONFLICT_RETRIES = int(os.getenv("MAX_CONFLICT_RETRIES", "5"))
RETRY_JITTER_SECONDS = 0.05

# Channel configuration
PUBLIC_CHANNEL_KEY = "public_channel"
