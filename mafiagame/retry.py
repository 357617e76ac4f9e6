"""Transparent retry of read-validate-write cycles that lose a version race."""

import asyncio
import functools
import logging
import random

from .config import MAX_CONFLICT_RETRIES, RETRY_JITTER_SECONDS
from .errors import ConflictError


logger = logging.getLogger(__name__)


def retry_on_conflict(method):
    """Re-run a service coroutine from the top when its commit raises ConflictError.

    The whole method is repeated, so every attempt re-reads fresh rows and
    re-validates before writing. The owning object may set ``max_retries``.
    """
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        attempts = max(1, getattr(self, "max_retries", MAX_CONFLICT_RETRIES))
        for attempt in range(1, attempts + 1):
            try:
                return await method(self, *args, **kwargs)
            except ConflictError as e:
                if attempt >= attempts:
                    logger.error(f"{method.__qualname__} gave up after {attempt} conflicting attempts: {e.message}")
                    raise
                logger.warning(f"{method.__qualname__} conflict on attempt {attempt}, retrying: {e.message}")
                await asyncio.sleep(random.uniform(0, RETRY_JITTER_SECONDS * attempt))

    return wrapper
