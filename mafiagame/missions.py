"""Mission catalog and the one-time abilities missions unlock."""

import logging
from typing import List, Optional

from .config import MAX_CONFLICT_RETRIES
from .errors import ForbiddenError, NotFoundError, ValidationError
from .models import AbilityFlag, Mission
from .registry import require_player
from .retry import retry_on_conflict
from .storage import GameStorage, Increment, WriteBatch


logger = logging.getLogger(__name__)


class MissionTracker:
    def __init__(self, storage: GameStorage, max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.max_retries = max_retries

    async def _require_mission(self, mission_id: str) -> Mission:
        if not mission_id:
            raise ValidationError("A mission ID is required.")
        mission = await self.storage.get_mission(mission_id)
        if not mission:
            raise NotFoundError(f"Mission {mission_id} not found.")
        return mission

    async def add_mission(self, mission_id: str, description: str, ability_unlocked: str) -> Mission:
        if not mission_id or not description:
            raise ValidationError("A mission needs an ID and a description.")
        try:
            ability = AbilityFlag(ability_unlocked)
        except ValueError:
            known = ", ".join(a.value for a in AbilityFlag)
            raise ValidationError(f"Unknown ability {ability_unlocked}. Choose one of: {known}.") from None

        mission = Mission(mission_id=mission_id, description=description, ability_unlocked=ability.value)
        await self.storage.save_mission(mission)
        logger.info(f"Mission {mission_id} unlocks {ability.value}")
        return mission

    async def list_missions(self) -> List[Mission]:
        return await self.storage.list_missions()

    @retry_on_conflict
    async def assign_mission(self, player_id: str, mission_id: str) -> Mission:
        player = await require_player(self.storage, player_id)
        mission = await self._require_mission(mission_id)
        await self.storage.commit(WriteBatch().update(
            "players", player.player_id, player.version, current_mission_id=mission.mission_id,
        ))
        logger.info(f"Assigned mission {mission_id} to {player_id}")
        return mission

    @retry_on_conflict
    async def complete_mission(self, player_id: str, mission_id: str) -> str:
        """Grant the mission's ability and count the completion. Returns the ability name."""
        player = await require_player(self.storage, player_id)
        mission = await self._require_mission(mission_id)
        try:
            ability = AbilityFlag(mission.ability_unlocked)
        except ValueError:
            raise NotFoundError(f"Mission {mission_id} unlocks unknown ability {mission.ability_unlocked}.") from None
        if ability.value in player.consumed_abilities:
            raise ForbiddenError(f"{player.name} has already used {ability.value}.")

        changes = {ability.field: True, "missions_completed": Increment(1)}
        if player.current_mission_id == mission.mission_id:
            changes["current_mission_id"] = None
        await self.storage.commit(WriteBatch().update("players", player.player_id, player.version, **changes))

        logger.info(f"{player_id} completed {mission_id} and unlocked {ability.value}")
        return ability.value

    async def get_player_mission(self, player_id: str) -> Optional[Mission]:
        player = await require_player(self.storage, player_id)
        if not player.current_mission_id:
            return None
        return await self.storage.get_mission(player.current_mission_id)
