"""Player registry: the single source of truth for roles, status and abilities."""

import logging
import random
from dataclasses import fields as dataclass_fields
from typing import Dict, List, Optional

from .config import MAX_CONFLICT_RETRIES
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import AbilityFlag, ActionResult, GamePhase, Player, PlayerStatus, Role
from .retry import retry_on_conflict
from .storage import GameStorage, WriteBatch


logger = logging.getLogger(__name__)

PLAYER_FIELDS = {f.name for f in dataclass_fields(Player)}
IMMUTABLE_FIELDS = {"player_id", "version"}
# Patches may raise these but never lower them
COUNTER_FIELDS = ("voting_power", "missions_completed")
APPEND_ONLY_FIELDS = ("consumed_abilities", "investigation_history", "revealed_teammates")


async def require_player(storage: GameStorage, player_id: str, label: str = "Player") -> Player:
    """Load a player or raise NotFoundError."""
    if not player_id:
        raise ValidationError(f"{label} ID is required.")
    player = await storage.get_player(player_id)
    if not player:
        raise NotFoundError(f"{label} {player_id} not found.")
    return player


class PlayerRegistry:
    """Reads and patches Player rows."""

    def __init__(self, storage: GameStorage, rng: Optional[random.Random] = None,
                 max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.rng = rng or random.Random()
        self.max_retries = max_retries

    async def get_player(self, player_id: str) -> Player:
        return await require_player(self.storage, player_id)

    async def list_players(self, status: Optional[PlayerStatus] = None, role: Optional[Role] = None) -> List[Player]:
        return await self.storage.list_players(status=status, role=role)

    async def find_player_by_name(self, name: str) -> Player:
        """Look a player up by display name, ignoring case."""
        if not name or not name.strip():
            raise ValidationError("A player name is required.")
        player = await self.storage.find_player_by_name(name)
        if not player:
            raise NotFoundError(f"No player named {name.strip()}.")
        return player

    @retry_on_conflict
    async def update_player(self, player_id: str, **changes) -> Player:
        """Apply a field-level patch to one player."""
        player = await self.get_player(player_id)
        patch = self._validate_patch(player, changes)
        await self.storage.commit(WriteBatch().update("players", player_id, player.version, **patch))
        logger.info(f"Updated player {player_id}: {sorted(patch)}")
        return await self.get_player(player_id)

    def _validate_patch(self, player: Player, changes: Dict) -> Dict:
        if not changes:
            raise ValidationError("Nothing to update.")
        unknown = set(changes) - PLAYER_FIELDS
        if unknown:
            raise ValidationError(f"Unknown player fields: {', '.join(sorted(unknown))}")
        locked = set(changes) & IMMUTABLE_FIELDS
        if locked:
            raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(locked))}")

        patch = dict(changes)
        try:
            if "role" in patch:
                patch["role"] = Role(patch["role"])
            if "status" in patch:
                patch["status"] = PlayerStatus(patch["status"])
        except ValueError as e:
            raise ValidationError(str(e)) from e

        if "status" in patch and patch["status"] == player.status:
            raise ValidationError(f"{player.name} is already {player.status.value}.")

        for name in COUNTER_FIELDS:
            if name in patch:
                value = patch[name]
                if not isinstance(value, int) or isinstance(value, bool) or value < getattr(player, name):
                    raise ValidationError(f"{name} can only increase.")

        for name in APPEND_ONLY_FIELDS:
            if name in patch:
                current = getattr(player, name)
                value = patch[name]
                if not isinstance(value, (list, tuple)) or list(value[:len(current)]) != current:
                    raise ValidationError(f"{name} can only be added to.")
                patch[name] = list(value)

        if "consumed_abilities" in patch:
            try:
                patch["consumed_abilities"] = [AbilityFlag(name).value for name in patch["consumed_abilities"]]
            except ValueError as e:
                raise ValidationError(str(e)) from e
        consumed = set(patch.get("consumed_abilities", player.consumed_abilities))

        if player.sheriff_shot_used and "sheriff_shot_used" in patch and not patch["sheriff_shot_used"]:
            raise ValidationError("The sheriff's shot cannot be given back.")

        for ability in AbilityFlag:
            if patch.get(ability.field) and ability.value in consumed:
                raise ForbiddenError(f"{ability.value} has already been used and cannot be restored.")
        return patch

    @retry_on_conflict
    async def join_game(self, player_id: str, name: str) -> ActionResult:
        """Register a new Villager while the roster is open."""
        if not player_id or not name:
            raise ValidationError("A player ID and name are required to join.")

        state = await self.storage.get_game_state()
        if state.roster_locked:
            raise ForbiddenError("The roster is locked. Roles have already been handed out.")
        if await self.storage.get_player(player_id):
            raise ForbiddenError("You are already in the game!")

        player = Player(player_id=player_id, name=name)
        await self.storage.commit(WriteBatch().insert("players", player))
        logger.info(f"Player {player_id} ({name}) joined")

        return ActionResult(
            True,
            "You have joined the game. Roles will be handed out when the game master starts.",
            f"**{name}** has joined the game!",
            {"player_id": player_id},
        )

    @retry_on_conflict
    async def assign_roles(self, role_counts: Dict[Role, int]) -> Dict[str, Role]:
        """Shuffle the requested special roles over the roster and start Day 1.

        Every player not dealt a special role stays a Villager.
        """
        state = await self.storage.get_game_state()
        if state.roster_locked or state.phase != GamePhase.SETUP:
            raise ForbiddenError("Roles have already been assigned for this game.")

        deck = []
        for role, count in role_counts.items():
            try:
                role = Role(role)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            if role == Role.VILLAGER:
                continue
            if not isinstance(count, int) or count < 0:
                raise ValidationError(f"Invalid count for {role.value}: {count}")
            deck.extend([role] * count)

        players = await self.storage.list_players()
        if not players:
            raise ValidationError("Nobody has joined the game yet.")
        if len(deck) > len(players):
            raise ValidationError(f"{len(deck)} special roles requested but only {len(players)} players joined.")

        deck.extend([Role.VILLAGER] * (len(players) - len(deck)))
        self.rng.shuffle(deck)

        batch = WriteBatch()
        assignments = {}
        for player, role in zip(players, deck):
            assignments[player.player_id] = role
            batch.update("players", player.player_id, player.version, role=role)
        batch.update_state(state.version, roster_locked=True, phase=GamePhase.DAY, current_day=1)
        await self.storage.commit(batch)

        logger.info(f"Assigned roles to {len(players)} players; Day 1 begins")
        return assignments
