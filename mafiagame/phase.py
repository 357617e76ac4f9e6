"""Day/night sequencing and win conditions."""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from .config import MAX_CONFLICT_RETRIES
from .errors import ForbiddenError
from .models import GamePhase, GameState, NightRecap, Player, PlayerStatus, Team
from .recap import NightResolver
from .retry import retry_on_conflict
from .storage import GameStorage, WriteBatch


logger = logging.getLogger(__name__)


def decide_winner(players: List[Player], dead_ids: Iterable[str] = ()) -> Optional[Team]:
    """Town wins when no Mafia is alive; Mafia wins once it matches everyone else."""
    dead_ids = set(dead_ids)
    alive = [p for p in players if p.is_alive and p.player_id not in dead_ids]
    mafia = sum(1 for p in alive if p.is_mafia)
    if mafia == 0:
        return Team.TOWN
    if mafia >= len(alive) - mafia:
        return Team.MAFIA
    return None


def project(players: List[Player], dead_ids: Iterable[str]) -> List[Player]:
    """Players as they will be once ``dead_ids`` are marked dead."""
    dead_ids = set(dead_ids)
    return [replace(p, status=PlayerStatus.DEAD) if p.player_id in dead_ids else p for p in players]


class PhaseController:
    """Gates which actions are legal and moves the game between day and night."""

    def __init__(self, storage: GameStorage, night_resolver: NightResolver,
                 max_retries: int = MAX_CONFLICT_RETRIES):
        self.storage = storage
        self.night_resolver = night_resolver
        self.max_retries = max_retries

    async def get_game_state(self) -> GameState:
        return await self.storage.get_game_state()

    async def require_night(self) -> GameState:
        state = await self.get_game_state()
        if state.phase != GamePhase.NIGHT:
            raise ForbiddenError("Night actions can only be submitted at night.")
        return state

    async def require_day(self) -> GameState:
        state = await self.get_game_state()
        if state.phase != GamePhase.DAY:
            raise ForbiddenError("This can only be done during the day.")
        return state

    @retry_on_conflict
    async def start_night(self) -> GameState:
        """Day -> Night. Every player's nightly action and night vote become available again."""
        state = await self.require_day()

        batch = WriteBatch()
        for player in await self.storage.list_players():
            if player.main_used or player.night_vote_used:
                batch.update("players", player.player_id, player.version, main_used=False, night_vote_used=False)
        batch.update_state(state.version, phase=GamePhase.NIGHT)
        await self.storage.commit(batch)

        logger.info(f"Night {state.current_day} has begun")
        return await self.get_game_state()

    @retry_on_conflict
    async def start_day(self) -> NightRecap:
        """Night -> Day. Resolves the night and checks whether anyone has won."""
        state = await self.require_night()
        day = state.current_day

        batch, _, killed = await self.night_resolver.plan_night(day)
        players = await self.storage.list_players()
        winner = state.winner or decide_winner(project(players, killed))

        if winner:
            batch.update_state(state.version, current_day=day + 1, phase=GamePhase.GAME_OVER, winner=winner)
        else:
            batch.update_state(state.version, current_day=day + 1, phase=GamePhase.DAY)
        await self.storage.commit(batch)

        logger.info(f"Night {day} resolved with {len(killed)} death(s); day {day + 1} begins")
        if winner:
            logger.info(f"Game over: {winner.value} wins")
        return await self.night_resolver.nightly_recap(day)

    async def evaluate_win_condition(self) -> Optional[Team]:
        state = await self.get_game_state()
        if state.winner:
            return state.winner
        if state.phase == GamePhase.SETUP:
            return None
        return decide_winner(await self.storage.list_players())
