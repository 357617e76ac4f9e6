"""
Tests for the mission catalog and ability unlocks.
"""

import asyncio

import pytest

from mafiagame.errors import ForbiddenError, NotFoundError, ValidationError
from mafiagame.models import AbilityFlag, Mission, PlayerStatus


@pytest.fixture
def missions(engine):
    async def add():
        await engine.missions.add_mission("M_REVIVE", "Get the host to laugh", "DoctorCanRevive")
        await engine.missions.add_mission("M_VOTE", "Win a round of cards", "VillagerCanIncreaseVote")
    asyncio.run(add())
    return engine.missions


def test_completing_mission_unlocks_ability(missions, make_game, town_roles, load_player):
    make_game(town_roles)

    ability = asyncio.run(missions.complete_mission("doctor1", "M_REVIVE"))

    assert ability == AbilityFlag.CAN_REVIVE.value
    doctor = load_player("doctor1")
    assert doctor.can_revive
    assert doctor.missions_completed == 1


def test_each_completion_counts_once(missions, make_game, town_roles, load_player):
    make_game(town_roles)

    asyncio.run(missions.complete_mission("villager1", "M_VOTE"))
    asyncio.run(missions.complete_mission("villager1", "M_REVIVE"))

    assert load_player("villager1").missions_completed == 2


def test_assigned_mission_is_cleared_on_completion(missions, make_game, town_roles, load_player):
    make_game(town_roles)
    asyncio.run(missions.assign_mission("villager1", "M_VOTE"))

    assert asyncio.run(missions.get_player_mission("villager1")).mission_id == "M_VOTE"

    asyncio.run(missions.complete_mission("villager1", "M_VOTE"))

    assert load_player("villager1").current_mission_id is None
    assert asyncio.run(missions.get_player_mission("villager1")) is None


def test_other_completion_keeps_current_mission(missions, make_game, town_roles, load_player):
    make_game(town_roles)
    asyncio.run(missions.assign_mission("villager1", "M_VOTE"))

    asyncio.run(missions.complete_mission("villager1", "M_REVIVE"))

    assert load_player("villager1").current_mission_id == "M_VOTE"


def test_add_mission_rejects_unknown_ability(engine):
    with pytest.raises(ValidationError):
        asyncio.run(engine.missions.add_mission("M_FLY", "Fly", "VillagerCanFly"))


def test_list_missions(missions):
    assert [m.mission_id for m in asyncio.run(missions.list_missions())] == ["M_REVIVE", "M_VOTE"]


def test_unknown_mission_or_player(missions, make_game, town_roles):
    make_game(town_roles)

    with pytest.raises(NotFoundError):
        asyncio.run(missions.complete_mission("doctor1", "M_MISSING"))
    with pytest.raises(NotFoundError):
        asyncio.run(missions.complete_mission("ghost", "M_REVIVE"))
    with pytest.raises(NotFoundError):
        asyncio.run(missions.assign_mission("doctor1", "M_MISSING"))


def test_mission_with_unknown_ability_name(engine, storage, make_game, town_roles, load_player):
    make_game(town_roles)
    asyncio.run(storage.save_mission(Mission("M_OLD", "Legacy mission", "SheriffCanDoubleShot")))

    with pytest.raises(NotFoundError):
        asyncio.run(engine.missions.complete_mission("sheriff1", "M_OLD"))

    assert load_player("sheriff1").missions_completed == 0


def test_consumed_ability_is_not_unlocked_again(engine, missions, make_game, town_roles, load_player):
    make_game(town_roles, extras={"villager2": {"status": PlayerStatus.DEAD}})
    asyncio.run(missions.complete_mission("doctor1", "M_REVIVE"))
    asyncio.run(engine.night.revive("doctor1"))

    with pytest.raises(ForbiddenError):
        asyncio.run(missions.complete_mission("doctor1", "M_REVIVE"))

    doctor = load_player("doctor1")
    assert not doctor.can_revive
    assert doctor.missions_completed == 1
