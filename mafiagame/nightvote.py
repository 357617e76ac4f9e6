"""The town's weighted night vote."""

import logging
from typing import List

from .config import MAX_CONFLICT_RETRIES
from .errors import ForbiddenError, ValidationError
from .models import ActionResult, NightVoteTally
from .phase import PhaseController
from .registry import require_player
from .retry import retry_on_conflict
from .storage import GameStorage, Increment, WriteBatch


logger = logging.getLogger(__name__)


def tally_id(day: int, target_id: str) -> str:
    return f"NV_{day}_{target_id}"


class TownVote:
    """Every living player may put their voting power behind one suspect each night."""

    def __init__(self, storage: GameStorage, phase: PhaseController, max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.phase = phase
        self.max_retries = max_retries

    @retry_on_conflict
    async def cast_night_vote(self, voter_id: str, target_id: str) -> ActionResult:
        """Add the voter's power to the target's tally for tonight.

        The first ballot against a target creates its tally row; two first
        ballots racing collide on the row ID and the loser retries as an
        increment.
        """
        if not voter_id or not target_id:
            raise ValidationError("Both a voter and a target are required.")
        if voter_id == target_id:
            raise ValidationError("You cannot vote against yourself.")

        state = await self.phase.require_night()
        voter = await require_player(self.storage, voter_id, "Voter")
        if not voter.is_alive:
            raise ForbiddenError("Dead players cannot vote.")
        if voter.night_vote_used:
            raise ForbiddenError("You have already cast your night vote.")
        target = await require_player(self.storage, target_id, "Target")
        if not target.is_alive:
            raise ValidationError(f"{target.name} is already dead.")

        day = state.current_day
        power = voter.voting_power
        key = tally_id(day, target.player_id)
        existing = {t.tally_id for t in await self.storage.get_night_votes(day)}

        batch = WriteBatch().expect_state(state.version)
        if key in existing:
            batch.update("night_votes", key, None, votes=Increment(power))
        else:
            batch.insert("night_votes", NightVoteTally(key, day, target.player_id, votes=power))
        batch.update("players", voter.player_id, voter.version, night_vote_used=True)
        await self.storage.commit(batch)

        logger.info(f"Night {day}: {voter.player_id} cast a night vote x{power} against {target.player_id}")
        return ActionResult(True, f"Your vote against {target.name} (power {power}) has been cast.",
                            data={"target": target.player_id, "voting_power": power})

    async def night_vote_tally(self, day: int) -> List[NightVoteTally]:
        if not isinstance(day, int) or isinstance(day, bool) or day < 1:
            raise ValidationError("Invalid day number.")
        return await self.storage.get_night_votes(day)
