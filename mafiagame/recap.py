"""End-of-night resolution and the nightly recap built from the archive."""

import logging
from collections import Counter
from typing import List, Set, Tuple

from .config import MAX_CONFLICT_RETRIES, MAX_KILL_TARGETS
from .errors import ValidationError
from .models import (
    ActionStatus,
    ActionType,
    ArchiveEntry,
    ArchiveType,
    NightRecap,
    PlayerStatus,
    Verdict,
    new_id,
)
from .retry import retry_on_conflict
from .storage import GameStorage, WriteBatch
from .timeutils import now_timestamp


logger = logging.getLogger(__name__)


class NightResolver:
    """Turns a night's logged Kill/Protect/Shoot actions into deaths and archive rows."""

    def __init__(self, storage: GameStorage, max_kill_targets: int = MAX_KILL_TARGETS,
                 max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.max_kill_targets = max_kill_targets
        self.max_retries = max_retries

    async def plan_night(self, day: int) -> Tuple[WriteBatch, NightRecap, Set[str]]:
        """Compute the outcome of a night without writing it.

        Returns the batch to commit, the recap it produces and the IDs of the
        players who die.
        """
        actions = await self.storage.get_night_actions(day, status=ActionStatus.LOGGED)
        tallies = await self.storage.get_night_votes(day)
        players = {p.player_id: p for p in await self.storage.list_players()}
        alive = {pid for pid, p in players.items() if p.is_alive}

        protected = []
        kill_counts = Counter()
        first_seen = {}
        shots = []
        for index, action in enumerate(actions):
            if action.action_type == ActionType.PROTECT and action.target_id not in protected:
                protected.append(action.target_id)
            elif action.action_type == ActionType.KILL and action.target_id in alive:
                kill_counts[action.target_id] += 1
                first_seen.setdefault(action.target_id, index)
            elif action.action_type == ActionType.SHOOT and action.target_id in alive and action.target_id not in shots:
                shots.append(action.target_id)

        # Most-named targets first, earliest submission breaks ties
        ranked = sorted(kill_counts, key=lambda pid: (-kill_counts[pid], first_seen[pid]))
        kill_targets = ranked[:self.max_kill_targets]

        recap = NightRecap(day=day)
        batch = WriteBatch()
        killed = set()
        timestamp = now_timestamp()

        def archive(action_type: ArchiveType, details: str, player_ids: List[str], outcome: str):
            batch.insert("archive", ArchiveEntry(
                entry_id=new_id("ARC"),
                timestamp=timestamp,
                day=day,
                action_type=action_type,
                details=details,
                player_ids=player_ids,
                outcome=outcome,
            ))

        for target in kill_targets:
            if target in protected:
                recap.mafia_protected.append(target)
                archive(ArchiveType.MAFIA_KILL, f"Mafia attacked {target} but the doctor saved them", [target], "Protected")
            else:
                killed.add(target)
                recap.mafia_kills.append(target)
                archive(ArchiveType.MAFIA_KILL, f"Mafia killed {target}", [target], "Killed")

        for target in shots:
            killed.add(target)
            recap.sheriff_kills.append(target)
            archive(ArchiveType.SHERIFF_ACTION, f"Sheriff shot {target}", [target], "Killed")

        for target in protected:
            if target in kill_targets:
                recap.doctor_protections.append(target)
                archive(ArchiveType.DOCTOR_PROTECTION, f"Doctor protected {target}", [target], "Success")
            else:
                archive(ArchiveType.DOCTOR_PROTECTION, f"Doctor protected {target}", [target], "Unneeded")

        if tallies:
            top = tallies[0].votes
            recap.night_vote_leaders = [t.target_id for t in tallies if t.votes == top]
            details = ", ".join(f"{t.target_id}: {t.votes}" for t in tallies)
            archive(ArchiveType.NIGHT_VOTE, f"Town night vote ({details})", recap.night_vote_leaders, "Most Votes")

        for pid in killed:
            player = players[pid]
            batch.update("players", pid, player.version, status=PlayerStatus.DEAD)

        for action in actions:
            batch.update("night_actions", action.action_id, action.version, status=ActionStatus.RESOLVED)

        # Anything logged or cast after the reads above sends the whole plan back for a retry
        batch.expect_count("night_actions", 0, day=day, status=ActionStatus.LOGGED)
        for tally in tallies:
            batch.update("night_votes", tally.tally_id, tally.version)
        batch.expect_count("night_votes", len(tallies), day=day)

        return batch, recap, killed

    @retry_on_conflict
    async def resolve_night(self, day: int) -> NightRecap:
        """Resolve a night on its own, outside a phase change."""
        batch, recap, killed = await self.plan_night(day)
        await self.storage.commit(batch)
        logger.info(f"Resolved night {day}: {len(killed)} death(s)")
        return recap

    async def nightly_recap(self, day: int) -> NightRecap:
        """Summarize the archive for one day."""
        if not isinstance(day, int) or isinstance(day, bool) or day < 1:
            raise ValidationError("Invalid day number.")

        recap = NightRecap(day=day)
        for entry in await self.storage.get_archive(day):
            if entry.action_type == ArchiveType.DOCTOR_PROTECTION and entry.outcome == "Success":
                recap.doctor_protections.extend(entry.player_ids)
            elif entry.action_type == ArchiveType.MAFIA_KILL and entry.outcome == "Killed":
                recap.mafia_kills.extend(entry.player_ids)
            elif entry.action_type == ArchiveType.MAFIA_KILL and entry.outcome == "Protected":
                recap.mafia_protected.extend(entry.player_ids)
            elif entry.action_type == ArchiveType.SHERIFF_ACTION and entry.outcome == "Killed":
                recap.sheriff_kills.extend(entry.player_ids)
            elif entry.action_type == ArchiveType.NIGHT_VOTE:
                recap.night_vote_leaders.extend(entry.player_ids)
            elif entry.action_type == ArchiveType.TRIAL_RESULT and entry.outcome in (v.value for v in Verdict):
                for accused in entry.player_ids:
                    recap.trial_results.append({"accused_player_id": accused, "result": entry.outcome})
        return recap
