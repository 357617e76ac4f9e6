"""Night action submission: role checks, one-time abilities and the action log."""

import logging
import random
from typing import List, Optional, Sequence, Union

from .config import MAX_CONFLICT_RETRIES, MAX_KILL_TARGETS
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import (
    CHANGE_ROLE_CHOICES,
    AbilityFlag,
    ActionResult,
    ActionStatus,
    ActionType,
    GameState,
    NightAction,
    Player,
    PlayerStatus,
    Role,
    new_id,
)
from .phase import PhaseController
from .registry import require_player
from .retry import retry_on_conflict
from .storage import GameStorage, WriteBatch
from .timeutils import now_timestamp


logger = logging.getLogger(__name__)


def consume_ability(batch: WriteBatch, player: Player, ability: AbilityFlag, **changes) -> WriteBatch:
    """Patch that spends a one-time ability along with any other changes to the same player."""
    changes[ability.field] = False
    changes["consumed_abilities"] = player.consumed_abilities + [ability.value]
    return batch.update("players", player.player_id, player.version, **changes)


class NightActionResolver:
    """Validates and records one actor's action for the current night."""

    def __init__(self, storage: GameStorage, phase: PhaseController, rng: Optional[random.Random] = None,
                 max_kill_targets: int = MAX_KILL_TARGETS, max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.phase = phase
        self.rng = rng or random.Random()
        self.max_kill_targets = max_kill_targets
        self.max_retries = max_retries

    async def _load_actor(self, actor_id: str, role: Role, night_only: bool = True):
        if not actor_id:
            raise ValidationError("An actor ID is required.")
        if night_only:
            state = await self.phase.require_night()
        else:
            state = await self.phase.get_game_state()

        actor = await require_player(self.storage, actor_id)
        if not actor.is_alive:
            raise ForbiddenError("Dead players cannot act.")
        if actor.role != role:
            raise ForbiddenError(f"Only a {role.value} can do that.")
        return actor, state

    @staticmethod
    def _require_main_action(actor: Player):
        if actor.main_used:
            raise ForbiddenError("You have already used your action for tonight.")

    @staticmethod
    def _require_ability(actor: Player, ability: AbilityFlag):
        if not actor.has_ability(ability):
            raise ForbiddenError(f"You do not have the {ability.value} ability.")

    async def _load_target(self, actor: Player, target_id: str, alive: bool = True,
                           allow_self: bool = True) -> Player:
        target = await require_player(self.storage, target_id, "Target")
        if alive and not target.is_alive:
            raise ValidationError(f"{target.name} is already dead.")
        if not allow_self and target.player_id == actor.player_id:
            raise ValidationError("You cannot target yourself.")
        return target

    @staticmethod
    def _log(batch: WriteBatch, state: GameState, actor: Player, action_type: ActionType,
             target_id: Optional[str], status: ActionStatus = ActionStatus.LOGGED,
             result: Optional[str] = None) -> NightAction:
        action = NightAction(
            action_id=new_id(f"ACT_{action_type.value.upper()}"),
            day=state.current_day,
            actor_id=actor.player_id,
            action_type=action_type,
            target_id=target_id,
            timestamp=now_timestamp(),
            status=status,
            result=result,
        )
        batch.insert("night_actions", action)
        return action

    # Main actions: one per player per night

    @retry_on_conflict
    async def kill(self, actor_id: str, target_ids: Union[str, Sequence[str]]) -> ActionResult:
        """Mafia names one or more kill targets. Deaths are decided when the night is resolved."""
        if isinstance(target_ids, str):
            target_ids = [target_ids]
        target_ids = list(target_ids or [])
        if not target_ids or not all(target_ids):
            raise ValidationError("At least one kill target is required.")
        if len(set(target_ids)) != len(target_ids):
            raise ValidationError("Kill targets must be different players.")
        if len(target_ids) > self.max_kill_targets:
            raise ValidationError(f"You may name at most {self.max_kill_targets} kill target(s).")

        actor, state = await self._load_actor(actor_id, Role.MAFIA)
        self._require_main_action(actor)
        targets = [await self._load_target(actor, tid, allow_self=False) for tid in target_ids]

        batch = WriteBatch().expect_state(state.version)
        for target in targets:
            self._log(batch, state, actor, ActionType.KILL, target.player_id)
        batch.update("players", actor.player_id, actor.version, main_used=True)
        await self.storage.commit(batch)

        names = ", ".join(t.name for t in targets)
        logger.info(f"Night {state.current_day}: {actor.player_id} marked {target_ids} for death")
        return ActionResult(True, f"Your kill on {names} has been logged.", data={"targets": target_ids})

    @retry_on_conflict
    async def protect(self, actor_id: str, target_id: str) -> ActionResult:
        """Doctor shields one player for the night."""
        actor, state = await self._load_actor(actor_id, Role.DOCTOR)
        self._require_main_action(actor)
        target = await self._load_target(actor, target_id)

        batch = WriteBatch().expect_state(state.version)
        self._log(batch, state, actor, ActionType.PROTECT, target.player_id)
        batch.update("players", actor.player_id, actor.version, main_used=True)
        await self.storage.commit(batch)

        logger.info(f"Night {state.current_day}: {actor.player_id} protected {target.player_id}")
        return ActionResult(True, f"You are protecting {target.name} tonight.", data={"target": target.player_id})

    @retry_on_conflict
    async def investigate(self, actor_id: str, target_id: str) -> ActionResult:
        """Detective learns whether the target is Mafia. Answers immediately."""
        actor, state = await self._load_actor(actor_id, Role.DETECTIVE)
        self._require_main_action(actor)
        target = await self._load_target(actor, target_id, alive=False)

        result = "YES" if target.role.value.lower() == Role.MAFIA.value.lower() else "NO"
        history = actor.investigation_history + [f"{target.player_id}:{result}"]

        batch = WriteBatch().expect_state(state.version)
        self._log(batch, state, actor, ActionType.INVESTIGATE, target.player_id, ActionStatus.RESOLVED, result)
        batch.update("players", actor.player_id, actor.version, main_used=True, investigation_history=history)
        await self.storage.commit(batch)

        verdict = "is" if result == "YES" else "is not"
        return ActionResult(
            True,
            f"{target.name} {verdict} a member of the Mafia.",
            data={"target": target.player_id, "is_mafia_result": result},
        )

    @retry_on_conflict
    async def shoot(self, actor_id: str, target_id: str) -> ActionResult:
        """Sheriff's one lethal shot. Also uses up the night's main action."""
        actor, state = await self._load_actor(actor_id, Role.SHERIFF)
        if actor.sheriff_shot_used:
            raise ForbiddenError("Sheriff has already used their one-time shot.")
        self._require_main_action(actor)
        target = await self._load_target(actor, target_id, allow_self=False)

        batch = WriteBatch().expect_state(state.version)
        self._log(batch, state, actor, ActionType.SHOOT, target.player_id)
        batch.update("players", actor.player_id, actor.version, main_used=True, sheriff_shot_used=True)
        await self.storage.commit(batch)

        logger.info(f"Night {state.current_day}: sheriff {actor.player_id} shot {target.player_id}")
        return ActionResult(True, f"Your shot at {target.name} has been logged.", data={"target": target.player_id})

    # One-time abilities

    @retry_on_conflict
    async def convert(self, actor_id: str) -> ActionResult:
        """Turn a random living Villager into Mafia."""
        actor, state = await self._load_actor(actor_id, Role.MAFIA)
        self._require_ability(actor, AbilityFlag.CAN_CONVERT)

        pool = await self.storage.list_players(status=PlayerStatus.ALIVE, role=Role.VILLAGER)
        if not pool:
            raise NotFoundError("No eligible villagers to convert.")
        target = self.rng.choice(pool)

        batch = WriteBatch().expect_state(state.version)
        batch.update("players", target.player_id, target.version, role=Role.MAFIA)
        consume_ability(batch, actor, AbilityFlag.CAN_CONVERT)
        self._log(batch, state, actor, ActionType.CONVERT, target.player_id, ActionStatus.RESOLVED)
        await self.storage.commit(batch)

        logger.info(f"{actor.player_id} converted {target.player_id} to Mafia")
        return ActionResult(True, f"{target.name} has been converted to the Mafia.", data={"target": target.player_id})

    @retry_on_conflict
    async def reveal(self, actor_id: str) -> ActionResult:
        """Learn the identity of a random living Mafia teammate not revealed before."""
        actor, state = await self._load_actor(actor_id, Role.MAFIA)
        self._require_ability(actor, AbilityFlag.CAN_REVEAL_SELF)

        pool = [
            p for p in await self.storage.list_players(status=PlayerStatus.ALIVE, role=Role.MAFIA)
            if p.player_id != actor.player_id and p.player_id not in actor.revealed_teammates
        ]
        if not pool:
            raise NotFoundError("No new teammates to reveal.")
        teammate = self.rng.choice(pool)

        batch = WriteBatch().expect_state(state.version)
        # The teammate must still be alive and Mafia when this commits
        batch.update("players", teammate.player_id, teammate.version)
        consume_ability(
            batch, actor, AbilityFlag.CAN_REVEAL_SELF,
            revealed_teammates=actor.revealed_teammates + [teammate.player_id],
        )
        self._log(batch, state, actor, ActionType.REVEAL, teammate.player_id, ActionStatus.RESOLVED)
        await self.storage.commit(batch)

        return ActionResult(True, f"Your teammate is {teammate.name}.", data={"teammate": teammate.player_id})

    @retry_on_conflict
    async def revive(self, actor_id: str) -> ActionResult:
        """Bring a random dead player back to life."""
        actor, state = await self._load_actor(actor_id, Role.DOCTOR)
        self._require_ability(actor, AbilityFlag.CAN_REVIVE)

        pool = await self.storage.list_players(status=PlayerStatus.DEAD)
        if not pool:
            raise NotFoundError("No dead players to revive.")
        target = self.rng.choice(pool)

        batch = WriteBatch().expect_state(state.version)
        batch.update("players", target.player_id, target.version, status=PlayerStatus.ALIVE)
        consume_ability(batch, actor, AbilityFlag.CAN_REVIVE)
        self._log(batch, state, actor, ActionType.REVIVE, target.player_id, ActionStatus.RESOLVED)
        await self.storage.commit(batch)

        logger.info(f"{actor.player_id} revived {target.player_id}")
        return ActionResult(
            True,
            f"{target.name} has been revived.",
            f"**{target.name}** has returned from the dead!",
            {"target": target.player_id},
        )

    @retry_on_conflict
    async def change_role(self, actor_id: str, new_role: Union[str, Role]) -> ActionResult:
        try:
            new_role = Role(new_role)
        except ValueError:
            new_role = None
        if new_role not in CHANGE_ROLE_CHOICES:
            choices = ", ".join(r.value for r in CHANGE_ROLE_CHOICES)
            raise ValidationError(f"Invalid new role selected. Choose one of: {choices}.")

        actor, state = await self._load_actor(actor_id, Role.VILLAGER, night_only=False)
        self._require_ability(actor, AbilityFlag.CAN_CHANGE_ROLE)

        batch = WriteBatch()
        consume_ability(batch, actor, AbilityFlag.CAN_CHANGE_ROLE, role=new_role)
        self._log(batch, state, actor, ActionType.CHANGE_ROLE, None, ActionStatus.RESOLVED, new_role.value)
        await self.storage.commit(batch)

        logger.info(f"{actor.player_id} changed role to {new_role.value}")
        return ActionResult(True, f"Your role has been changed! You are now a {new_role.value}.",
                            data={"role": new_role.value})

    @retry_on_conflict
    async def increase_vote_power(self, actor_id: str) -> ActionResult:
        actor, state = await self._load_actor(actor_id, Role.VILLAGER, night_only=False)
        self._require_ability(actor, AbilityFlag.CAN_INCREASE_VOTE)

        new_power = actor.voting_power + 1
        batch = WriteBatch()
        consume_ability(batch, actor, AbilityFlag.CAN_INCREASE_VOTE, voting_power=new_power)
        self._log(batch, state, actor, ActionType.INCREASE_VOTE_POWER, None, ActionStatus.RESOLVED, str(new_power))
        await self.storage.commit(batch)

        return ActionResult(True, f"Your voting power is now {new_power}.", data={"voting_power": new_power})

    async def investigation_history(self, player_id: str) -> List[str]:
        player = await require_player(self.storage, player_id)
        return player.investigation_history
