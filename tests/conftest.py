"""
Pytest fixtures for Mafia Nights tests.

Every test gets its own SQLite file; async services are driven with asyncio.run.
"""

import asyncio
import random

import pytest

from mafiagame.engine import GameEngine
from mafiagame.models import GamePhase, Player, Role
from mafiagame.storage import GameStorage, WriteBatch


@pytest.fixture
def storage(tmp_path):
    """A freshly initialized game database."""
    storage = GameStorage(str(tmp_path / "mafia_test.db"), timeout=30.0)
    asyncio.run(storage.initialize())
    return storage


@pytest.fixture
def engine(storage):
    """Engine with a seeded RNG so random picks are repeatable."""
    return GameEngine(storage, rng=random.Random(1234))


@pytest.fixture
def make_game(storage):
    """Seed players with fixed roles and put the game in a given phase.

    ``extras`` maps a player ID to Player field overrides, e.g.
    ``{"mafia1": {"can_convert": True}}``.
    """
    def _make(roles, phase=GamePhase.NIGHT, day=1, extras=None):
        extras = extras or {}

        async def seed():
            state = await storage.get_game_state()
            batch = WriteBatch()
            for player_id, role in roles.items():
                batch.insert("players", Player(
                    player_id=player_id,
                    name=player_id.capitalize(),
                    role=role,
                    **extras.get(player_id, {}),
                ))
            batch.update_state(state.version, phase=phase, current_day=day, roster_locked=True)
            await storage.commit(batch)

        asyncio.run(seed())

    return _make


@pytest.fixture
def town_roles():
    """One of each main role plus three villagers. Nobody has won yet."""
    return {
        "mafia1": Role.MAFIA,
        "doctor1": Role.DOCTOR,
        "detective1": Role.DETECTIVE,
        "sheriff1": Role.SHERIFF,
        "villager1": Role.VILLAGER,
        "villager2": Role.VILLAGER,
        "villager3": Role.VILLAGER,
    }


@pytest.fixture
def load_player(storage):
    """Read a player row back outside any service."""
    def _load(player_id):
        return asyncio.run(storage.get_player(player_id))
    return _load
