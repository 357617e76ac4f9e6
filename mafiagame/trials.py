"""Accusations, their approval into trials, and trial verdicts."""

import logging
from typing import List, Optional, Tuple

from .config import MAX_CONFLICT_RETRIES, TRIAL_WINDOW_HOURS
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import (
    Accusation,
    ApprovalStatus,
    ArchiveEntry,
    ArchiveType,
    GamePhase,
    PlayerStatus,
    Role,
    Team,
    Trial,
    TrialStatus,
    Verdict,
    new_id,
)
from .phase import decide_winner, project
from .registry import require_player
from .retry import retry_on_conflict
from .storage import GameStorage, WriteBatch
from .timeutils import now_timestamp, timestamp_from_hours


logger = logging.getLogger(__name__)


def decide_verdict(trial: Trial) -> Verdict:
    """Strict majority of weighted votes convicts. A tie acquits."""
    if trial.guilty_tally > trial.not_guilty_tally:
        return Verdict.GUILTY
    return Verdict.NOT_GUILTY


class TrialLifecycle:
    """Moves accusations through Pending -> Approved/Rejected and trials through Active -> Resolved."""

    def __init__(self, storage: GameStorage, trial_window_hours: float = TRIAL_WINDOW_HOURS,
                 max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.trial_window_hours = trial_window_hours
        self.max_retries = max_retries

    async def _require_pending(self, accusation_id: str) -> Accusation:
        if not accusation_id:
            raise ValidationError("An accusation ID is required.")
        accusation = await self.storage.get_accusation(accusation_id)
        if not accusation:
            raise NotFoundError(f"Accusation {accusation_id} not found.")
        if accusation.approval_status != ApprovalStatus.PENDING:
            raise ForbiddenError(f"Accusation {accusation_id} is already {accusation.approval_status.value}.")
        return accusation

    @retry_on_conflict
    async def submit_accusation(self, accuser_id: str, accused_id: str,
                                evidence_url: Optional[str] = None) -> str:
        """File an accusation for the game master to review. Returns its ID."""
        if not accuser_id or not accused_id:
            raise ValidationError("Both the accuser and the accused are required.")
        if accuser_id == accused_id:
            raise ValidationError("You cannot accuse yourself.")

        accuser = await require_player(self.storage, accuser_id, "Accuser")
        accused = await require_player(self.storage, accused_id, "Accused player")
        if not accuser.is_alive:
            raise ForbiddenError("Dead players cannot accuse anyone.")
        if not accused.is_alive:
            raise ValidationError(f"{accused.name} is already dead.")

        accusation = Accusation(
            accusation_id=new_id("ACC"),
            accuser_id=accuser_id,
            accused_id=accused_id,
            audio_evidence_url=evidence_url or None,
            submission_time=now_timestamp(),
        )
        await self.storage.commit(WriteBatch().insert("accusations", accusation))

        logger.info(f"{accuser_id} accused {accused_id} ({accusation.accusation_id})")
        return accusation.accusation_id

    @retry_on_conflict
    async def approve_accusation(self, accusation_id: str) -> Trial:
        """Open a trial for a pending accusation and seat the jury."""
        accusation = await self._require_pending(accusation_id)

        active = await self.get_active_trial()
        if active:
            raise ForbiddenError(f"Trial {active.trial_id} is still in progress. Resolve it first.")

        accused = await require_player(self.storage, accusation.accused_id, "Accused player")
        if not accused.is_alive:
            raise ForbiddenError(f"{accused.name} has died since the accusation was filed.")
        state = await self.storage.get_game_state()
        if state.phase == GamePhase.GAME_OVER:
            raise ForbiddenError("The game is over.")

        start = now_timestamp()
        trial = Trial(
            trial_id=new_id("TRIAL"),
            accusation_id=accusation.accusation_id,
            accused_id=accused.player_id,
            audio_evidence_url=accusation.audio_evidence_url,
            start_time=start,
            voting_deadline=timestamp_from_hours(self.trial_window_hours, start),
        )

        batch = WriteBatch()
        batch.update(
            "accusations", accusation.accusation_id, accusation.version,
            approval_status=ApprovalStatus.APPROVED,
            approval_time=start,
            trial_started=True,
            trial_id=trial.trial_id,
        )
        batch.insert("trials", trial)
        # Still alive at commit time
        batch.update("players", accused.player_id, accused.version)
        batch.update_state(state.version, last_accused_player_id=accused.player_id)

        jurors = [
            p for p in await self.storage.list_players(status=PlayerStatus.ALIVE)
            if p.player_id != accused.player_id
        ]
        for juror in jurors:
            batch.update("players", juror.player_id, juror.version, is_jury_member=True)
        await self.storage.commit(batch)

        logger.info(f"Trial {trial.trial_id} opened against {accused.player_id} with {len(jurors)} jurors")
        return trial

    @retry_on_conflict
    async def reject_accusation(self, accusation_id: str) -> Accusation:
        accusation = await self._require_pending(accusation_id)
        await self.storage.commit(WriteBatch().update(
            "accusations", accusation.accusation_id, accusation.version,
            approval_status=ApprovalStatus.REJECTED,
            approval_time=now_timestamp(),
        ))
        logger.info(f"Accusation {accusation_id} rejected")
        return await self.storage.get_accusation(accusation_id)

    async def pending_accusations(self) -> List[Accusation]:
        return await self.storage.list_accusations(ApprovalStatus.PENDING)

    async def get_active_trial(self) -> Optional[Trial]:
        trials = await self.storage.list_trials(TrialStatus.ACTIVE)
        return trials[0] if trials else None

    async def get_trial(self, trial_id: str) -> Trial:
        if not trial_id:
            raise ValidationError("A trial ID is required.")
        trial = await self.storage.get_trial(trial_id)
        if not trial:
            raise NotFoundError(f"Trial {trial_id} not found.")
        return trial

    @retry_on_conflict
    async def resolve_trial(self, trial_id: str) -> Verdict:
        """Close a trial, apply its verdict and dismiss the jury.

        A guilty verdict kills the accused. Convicting the Jester hands them
        the game; otherwise the usual win conditions are checked.
        """
        trial = await self.get_trial(trial_id)
        if trial.status != TrialStatus.ACTIVE:
            raise ForbiddenError(f"Trial {trial_id} has already been resolved.")

        state = await self.storage.get_game_state()
        players = await self.storage.list_players()
        by_id = {p.player_id: p for p in players}
        accused = by_id.get(trial.accused_id)
        verdict = decide_verdict(trial)
        resolved_at = now_timestamp()

        batch = WriteBatch()
        batch.update(
            "trials", trial.trial_id, trial.version,
            status=TrialStatus.RESOLVED,
            verdict=verdict,
            resolved_time=resolved_at,
        )

        dead = set()
        if verdict == Verdict.GUILTY and accused and accused.is_alive:
            batch.update("players", accused.player_id, accused.version, status=PlayerStatus.DEAD)
            dead.add(accused.player_id)

        for juror in players:
            if juror.is_jury_member:
                batch.update("players", juror.player_id, juror.version, is_jury_member=False)

        batch.insert("archive", ArchiveEntry(
            entry_id=new_id("ARC"),
            timestamp=resolved_at,
            day=state.current_day,
            action_type=ArchiveType.TRIAL_RESULT,
            details=(f"{trial.accused_id} found {verdict.value} "
                     f"({trial.guilty_tally} guilty / {trial.not_guilty_tally} not guilty)"),
            player_ids=[trial.accused_id],
            outcome=verdict.value,
        ))

        winner = state.winner
        if not winner and dead and accused.role == Role.JESTER:
            winner = Team.JESTER
        elif not winner and state.phase != GamePhase.SETUP:
            winner = decide_winner(project(players, dead))
        if winner and not state.winner:
            batch.update_state(state.version, winner=winner, phase=GamePhase.GAME_OVER)

        await self.storage.commit(batch)

        logger.info(f"Trial {trial_id} resolved: {trial.accused_id} {verdict.value}")
        if winner and not state.winner:
            logger.info(f"Game over: {winner.value} wins")
        return verdict

    async def resolve_expired_trials(self, now_ts: Optional[int] = None) -> List[Tuple[str, Verdict]]:
        """Resolve every Active trial whose voting deadline has passed."""
        now_ts = now_timestamp() if now_ts is None else now_ts
        results = []
        for trial in await self.storage.list_trials(TrialStatus.ACTIVE):
            if trial.voting_deadline > now_ts:
                continue
            try:
                verdict = await self.resolve_trial(trial.trial_id)
            except ForbiddenError:
                logger.info(f"Trial {trial.trial_id} was resolved elsewhere")
                continue
            results.append((trial.trial_id, verdict))
        return results
