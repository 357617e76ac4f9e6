"""Wires the game services around one shared storage object."""

import logging
import random
from typing import Optional

from .config import MAX_CONFLICT_RETRIES, MAX_KILL_TARGETS, TRIAL_WINDOW_HOURS
from .jury import JuryTally
from .missions import MissionTracker
from .night import NightActionResolver
from .nightvote import TownVote
from .phase import PhaseController
from .recap import NightResolver
from .registry import PlayerRegistry
from .storage import GameStorage
from .trials import TrialLifecycle


logger = logging.getLogger(__name__)


class GameEngine:
    """Constructed once per process. Every cog and task talks to the game through this."""

    def __init__(self, storage: GameStorage, rng: Optional[random.Random] = None,
                 trial_window_hours: float = TRIAL_WINDOW_HOURS,
                 max_kill_targets: int = MAX_KILL_TARGETS,
                 max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.rng = rng or random.Random()

        self.registry = PlayerRegistry(storage, self.rng, max_retries)
        self.night_resolver = NightResolver(storage, max_kill_targets, max_retries)
        self.phase = PhaseController(storage, self.night_resolver, max_retries)
        self.night = NightActionResolver(storage, self.phase, self.rng, max_kill_targets, max_retries)
        self.town_vote = TownVote(storage, self.phase, max_retries)
        self.trials = TrialLifecycle(storage, trial_window_hours, max_retries)
        self.jury = JuryTally(storage, max_retries)
        self.missions = MissionTracker(storage, max_retries)

    async def initialize(self):
        await self.storage.initialize()
        logger.info(f"Game database ready at {self.storage.db_path}")

    async def reset_game(self):
        """Wipe players, actions, trials and votes. Missions and the announcement channel are kept."""
        await self.storage.clear_all_game_data()
        logger.info("Game data cleared")
