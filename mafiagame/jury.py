"""Weighted jury ballots and the trial tallies they feed."""

import logging
from typing import List, Optional, Union

from .config import MAX_CONFLICT_RETRIES
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import ActionResult, TrialStatus, Vote, VoteType, new_id
from .registry import require_player
from .retry import retry_on_conflict
from .storage import GameStorage, Increment, WriteBatch
from .timeutils import now_timestamp


logger = logging.getLogger(__name__)

TALLY_COLUMNS = {
    VoteType.GUILTY: "guilty_tally",
    VoteType.NOT_GUILTY: "not_guilty_tally",
}


class JuryTally:
    def __init__(self, storage: GameStorage, max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.max_retries = max_retries

    @retry_on_conflict
    async def cast_vote(self, voter_id: str, trial_id: str, vote_type: Union[str, VoteType],
                        voting_power: Optional[int] = None) -> ActionResult:
        """Record one juror's ballot.

        The ballot, the tally increment and the juror's dismissal are written
        together. The tally is bumped in SQL so concurrent ballots never lose
        each other's weight. A ballot racing a verdict loses on the juror's
        version, since resolving a trial dismisses every remaining juror.
        """
        if not isinstance(vote_type, VoteType):
            try:
                vote_type = VoteType(str(vote_type).upper().replace(" ", "").replace("_", ""))
            except ValueError:
                raise ValidationError("Vote must be GUILTY or NOTGUILTY.") from None
        if voting_power is not None and (
                not isinstance(voting_power, int) or isinstance(voting_power, bool) or voting_power < 1):
            raise ValidationError("Voting power must be a positive whole number.")
        if not trial_id:
            raise ValidationError("A trial ID is required.")

        voter = await require_player(self.storage, voter_id, "Voter")
        trial = await self.storage.get_trial(trial_id)
        if not trial:
            raise NotFoundError(f"Trial {trial_id} not found.")
        if trial.status != TrialStatus.ACTIVE:
            raise ForbiddenError("Voting on this trial has closed.")
        if not voter.is_alive:
            raise ForbiddenError("Dead players cannot vote.")
        if not voter.is_jury_member:
            raise ForbiddenError("You are not on the jury for this trial.")
        if voting_power is not None and voting_power != voter.voting_power:
            raise ValidationError(f"Your voting power is {voter.voting_power}, not {voting_power}.")

        power = voter.voting_power
        vote = Vote(
            vote_id=new_id("VOTE"),
            trial_id=trial.trial_id,
            voter_id=voter.player_id,
            vote_type=vote_type,
            voting_power=power,
            timestamp=now_timestamp(),
        )

        batch = WriteBatch()
        batch.insert("votes", vote)
        batch.update("trials", trial.trial_id, None, **{TALLY_COLUMNS[vote_type]: Increment(power)})
        batch.update("players", voter.player_id, voter.version, is_jury_member=False)
        await self.storage.commit(batch)

        logger.info(f"{voter.player_id} voted {vote_type.value} x{power} on {trial.trial_id}")
        return ActionResult(
            True,
            f"Your {vote_type.value} vote (power {power}) has been recorded.",
            data={"vote_id": vote.vote_id, "voting_power": power},
        )

    async def votes_for_trial(self, trial_id: str) -> List[Vote]:
        if not trial_id:
            raise ValidationError("A trial ID is required.")
        return await self.storage.get_votes(trial_id=trial_id)

    async def votes_by_voter(self, voter_id: str) -> List[Vote]:
        await require_player(self.storage, voter_id, "Voter")
        return await self.storage.get_votes(voter_id=voter_id)
