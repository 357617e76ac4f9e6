"""
Tests for night action submission and one-time abilities.
"""

import asyncio
import random

import pytest

from mafiagame.engine import GameEngine
from mafiagame.errors import ForbiddenError, NotFoundError, ValidationError
from mafiagame.models import AbilityFlag, ActionStatus, ActionType, GamePhase, Player, PlayerStatus, Role
from mafiagame.storage import GameStorage, WriteBatch


def test_detective_investigates_mafia(engine, make_game, town_roles, load_player):
    make_game(town_roles)

    result = asyncio.run(engine.night.investigate("detective1", "mafia1"))

    assert result.data["is_mafia_result"] == "YES"
    detective = load_player("detective1")
    assert detective.investigation_history == ["mafia1:YES"]
    assert detective.main_used

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.investigate("detective1", "villager1"))


def test_investigation_is_deterministic(engine, make_game, town_roles, load_player):
    make_game(town_roles)

    result = asyncio.run(engine.night.investigate("detective1", "doctor1"))

    assert result.data["is_mafia_result"] == "NO"
    assert asyncio.run(engine.night.investigation_history("detective1")) == ["doctor1:NO"]


def test_investigate_logs_resolved_action(engine, make_game, town_roles, storage):
    make_game(town_roles)

    asyncio.run(engine.night.investigate("detective1", "mafia1"))

    actions = asyncio.run(storage.get_night_actions(1))
    assert len(actions) == 1
    assert actions[0].action_type == ActionType.INVESTIGATE
    assert actions[0].status == ActionStatus.RESOLVED
    assert actions[0].result == "YES"


def test_night_actions_require_night(engine, make_game, town_roles):
    make_game(town_roles, phase=GamePhase.DAY)

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.protect("doctor1", "villager1"))


def test_wrong_role_is_forbidden(engine, make_game, town_roles):
    make_game(town_roles)

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.kill("villager1", ["villager2"]))


def test_dead_actor_is_forbidden(engine, make_game, town_roles):
    make_game(town_roles, extras={"doctor1": {"status": PlayerStatus.DEAD}})

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.protect("doctor1", "villager1"))


def test_unknown_actor_is_not_found(engine, make_game, town_roles):
    make_game(town_roles)

    with pytest.raises(NotFoundError):
        asyncio.run(engine.night.protect("nobody", "villager1"))


def test_missing_input_is_validation_error(engine, make_game, town_roles):
    make_game(town_roles)

    with pytest.raises(ValidationError):
        asyncio.run(engine.night.protect("", "villager1"))


def test_kill_logs_and_uses_main_action(engine, make_game, town_roles, storage, load_player):
    make_game(town_roles)

    asyncio.run(engine.night.kill("mafia1", ["villager1"]))

    actions = asyncio.run(storage.get_night_actions(1, status=ActionStatus.LOGGED))
    assert [(a.action_type, a.target_id) for a in actions] == [(ActionType.KILL, "villager1")]
    assert load_player("mafia1").main_used
    # Nobody dies until the night is resolved
    assert load_player("villager1").is_alive

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.kill("mafia1", ["villager2"]))


@pytest.mark.parametrize("targets", [
    [],
    ["mafia1"],
    ["villager1", "villager2"],
    ["villager1", "villager1"],
])
def test_kill_rejects_bad_targets(engine, make_game, town_roles, load_player, targets):
    make_game(town_roles)

    with pytest.raises(ValidationError):
        asyncio.run(engine.night.kill("mafia1", targets))

    assert not load_player("mafia1").main_used


def test_kill_rejects_dead_target(engine, make_game, town_roles):
    make_game(town_roles, extras={"villager1": {"status": PlayerStatus.DEAD}})

    with pytest.raises(ValidationError):
        asyncio.run(engine.night.kill("mafia1", ["villager1"]))


def test_shoot_is_one_time(engine, make_game, town_roles, load_player):
    make_game(town_roles)

    asyncio.run(engine.night.shoot("sheriff1", "mafia1"))

    sheriff = load_player("sheriff1")
    assert sheriff.sheriff_shot_used
    assert sheriff.main_used


def test_shoot_after_shot_used_is_forbidden(engine, make_game, town_roles):
    make_game(town_roles, extras={"sheriff1": {"sheriff_shot_used": True}})

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.shoot("sheriff1", "mafia1"))


def test_mafia_converts_villager(engine, make_game, town_roles, load_player, storage):
    make_game(town_roles, extras={"mafia1": {"can_convert": True}})

    result = asyncio.run(engine.night.convert("mafia1"))

    converted = load_player(result.data["target"])
    assert converted.player_id in ("villager1", "villager2", "villager3")
    assert converted.role == Role.MAFIA
    mafia = load_player("mafia1")
    assert not mafia.can_convert
    assert mafia.consumed_abilities == [AbilityFlag.CAN_CONVERT.value]

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.convert("mafia1"))
    assert len(asyncio.run(storage.list_players(role=Role.MAFIA))) == 2


def test_convert_skips_dead_villagers(engine, make_game, load_player):
    make_game(
        {"mafia1": Role.MAFIA, "villager1": Role.VILLAGER, "villager2": Role.VILLAGER},
        extras={"mafia1": {"can_convert": True}, "villager1": {"status": PlayerStatus.DEAD}},
    )

    result = asyncio.run(engine.night.convert("mafia1"))

    assert result.data["target"] == "villager2"
    assert load_player("villager1").role == Role.VILLAGER


def test_convert_with_no_villagers_changes_nothing(engine, make_game, load_player, storage):
    make_game({"mafia1": Role.MAFIA, "doctor1": Role.DOCTOR}, extras={"mafia1": {"can_convert": True}})

    with pytest.raises(NotFoundError):
        asyncio.run(engine.night.convert("mafia1"))

    mafia = load_player("mafia1")
    assert mafia.can_convert
    assert mafia.consumed_abilities == []
    assert asyncio.run(storage.get_night_actions(1)) == []


def test_concurrent_converts_consume_once(engine, make_game, storage):
    make_game(
        {"mafia1": Role.MAFIA, "villager1": Role.VILLAGER, "villager2": Role.VILLAGER, "villager3": Role.VILLAGER},
        extras={"mafia1": {"can_convert": True}},
    )

    async def convert_twice():
        return await asyncio.gather(
            engine.night.convert("mafia1"),
            engine.night.convert("mafia1"),
            return_exceptions=True,
        )

    results = asyncio.run(convert_twice())

    assert sum(1 for r in results if isinstance(r, ForbiddenError)) == 1
    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert len(asyncio.run(storage.list_players(role=Role.MAFIA))) == 2


def test_reveal_names_teammates_once_each(engine, make_game, load_player):
    make_game(
        {"mafia1": Role.MAFIA, "mafia2": Role.MAFIA, "villager1": Role.VILLAGER, "villager2": Role.VILLAGER,
         "villager3": Role.VILLAGER},
        extras={"mafia1": {"can_reveal_self": True}},
    )

    result = asyncio.run(engine.night.reveal("mafia1"))

    assert result.data["teammate"] == "mafia2"
    mafia = load_player("mafia1")
    assert mafia.revealed_teammates == ["mafia2"]
    assert not mafia.can_reveal_self


def test_reveal_with_no_unrevealed_teammates(engine, make_game, load_player):
    make_game(
        {"mafia1": Role.MAFIA, "mafia2": Role.MAFIA, "villager1": Role.VILLAGER},
        extras={"mafia1": {"can_reveal_self": True, "revealed_teammates": ["mafia2"]}},
    )

    with pytest.raises(NotFoundError):
        asyncio.run(engine.night.reveal("mafia1"))

    assert load_player("mafia1").can_reveal_self


def test_doctor_revives_dead_player(engine, make_game, town_roles, load_player):
    make_game(
        town_roles,
        extras={"doctor1": {"can_revive": True}, "villager2": {"status": PlayerStatus.DEAD}},
    )

    result = asyncio.run(engine.night.revive("doctor1"))

    assert result.data["target"] == "villager2"
    assert load_player("villager2").is_alive
    assert not load_player("doctor1").can_revive
    assert result.public_message


def test_revive_with_nobody_dead(engine, make_game, town_roles, load_player):
    make_game(town_roles, extras={"doctor1": {"can_revive": True}})

    with pytest.raises(NotFoundError):
        asyncio.run(engine.night.revive("doctor1"))

    assert load_player("doctor1").can_revive


def test_change_role_works_during_the_day(engine, make_game, town_roles, load_player):
    make_game(town_roles, phase=GamePhase.DAY, extras={"villager1": {"can_change_role": True}})

    asyncio.run(engine.night.change_role("villager1", "Detective"))

    player = load_player("villager1")
    assert player.role == Role.DETECTIVE
    assert not player.can_change_role
    assert AbilityFlag.CAN_CHANGE_ROLE.value in player.consumed_abilities


def test_change_role_rejects_other_roles(engine, make_game, town_roles, load_player):
    make_game(town_roles, extras={"villager1": {"can_change_role": True}})

    with pytest.raises(ValidationError):
        asyncio.run(engine.night.change_role("villager1", "Sheriff"))

    assert load_player("villager1").can_change_role


def test_increase_vote_power_is_one_time(engine, make_game, town_roles, load_player):
    make_game(town_roles, extras={"villager1": {"can_increase_vote": True}})

    result = asyncio.run(engine.night.increase_vote_power("villager1"))

    assert result.data["voting_power"] == 2
    assert load_player("villager1").voting_power == 2
    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.increase_vote_power("villager1"))
    assert load_player("villager1").voting_power == 2


def test_ability_without_flag_is_forbidden(engine, make_game, town_roles):
    make_game(town_roles)

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.night.convert("mafia1"))


POOL = ["pick1", "pick2", "pick3", "pick4"]

# ability -> (actor, actor's role and flag, role and status of the pool, result key)
RANDOM_PICKS = {
    "convert": ("mafia1", Role.MAFIA, {"can_convert": True}, Role.VILLAGER, PlayerStatus.ALIVE, "target"),
    "revive": ("doctor1", Role.DOCTOR, {"can_revive": True}, Role.VILLAGER, PlayerStatus.DEAD, "target"),
    "reveal": ("mafia1", Role.MAFIA, {"can_reveal_self": True}, Role.MAFIA, PlayerStatus.ALIVE, "teammate"),
}


def pick_once(path, ability, seed):
    actor_id, actor_role, flags, pool_role, pool_status, key = RANDOM_PICKS[ability]
    storage = GameStorage(str(path), timeout=30.0)
    engine = GameEngine(storage, rng=random.Random(seed))

    async def play():
        await engine.initialize()
        state = await storage.get_game_state()
        batch = WriteBatch()
        batch.insert("players", Player(actor_id, actor_id, role=actor_role, **flags))
        for player_id in POOL:
            batch.insert("players", Player(player_id, player_id, role=pool_role, status=pool_status))
        for i in range(6):
            batch.insert("players", Player(f"bystander{i}", "Bystander", role=Role.DETECTIVE))
        batch.update_state(state.version, phase=GamePhase.NIGHT, current_day=1, roster_locked=True)
        await storage.commit(batch)
        result = await getattr(engine.night, ability)(actor_id)
        return result.data[key]

    return asyncio.run(play())


@pytest.mark.parametrize("ability", sorted(RANDOM_PICKS))
def test_random_picks_cover_the_whole_pool(tmp_path, ability):
    picks = [pick_once(tmp_path / f"{ability}{seed}.db", ability, seed) for seed in range(40)]

    assert set(picks) == set(POOL)


@pytest.mark.parametrize("ability", sorted(RANDOM_PICKS))
def test_random_pick_is_repeatable_for_a_seed(tmp_path, ability):
    first = [pick_once(tmp_path / f"a{seed}.db", ability, seed) for seed in range(5)]
    second = [pick_once(tmp_path / f"b{seed}.db", ability, seed) for seed in range(5)]

    assert first == second


def test_teammate_killed_during_reveal_is_not_revealed(engine, make_game, storage, load_player, monkeypatch):
    make_game(
        {"mafia1": Role.MAFIA, "mafia2": Role.MAFIA, "villager1": Role.VILLAGER, "villager2": Role.VILLAGER,
         "villager3": Role.VILLAGER},
        extras={"mafia1": {"can_reveal_self": True}},
    )
    commit = storage.commit
    deaths = []

    async def teammate_dies_first(batch):
        if not deaths:
            teammate = await storage.get_player("mafia2")
            await commit(WriteBatch().update("players", "mafia2", teammate.version, status=PlayerStatus.DEAD))
            deaths.append("mafia2")
        return await commit(batch)

    monkeypatch.setattr(storage, "commit", teammate_dies_first)

    with pytest.raises(NotFoundError):
        asyncio.run(engine.night.reveal("mafia1"))

    mafia = load_player("mafia1")
    assert mafia.revealed_teammates == []
    assert mafia.can_reveal_self
