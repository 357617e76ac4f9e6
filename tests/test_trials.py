"""
Tests for accusations, trial approval and verdicts.
"""

import asyncio

import pytest

from mafiagame.errors import ForbiddenError, NotFoundError, ValidationError
from mafiagame.models import (
    ApprovalStatus,
    GamePhase,
    PlayerStatus,
    Role,
    Team,
    TrialStatus,
    Verdict,
    VoteType,
)


@pytest.fixture
def day_game(make_game, town_roles):
    make_game(town_roles, phase=GamePhase.DAY)


def accuse_and_approve(engine, accuser, accused):
    accusation_id = asyncio.run(engine.trials.submit_accusation(accuser, accused, "https://example.com/a.mp3"))
    return asyncio.run(engine.trials.approve_accusation(accusation_id))


def test_accusation_becomes_trial(engine, day_game, storage):
    accusation_id = asyncio.run(engine.trials.submit_accusation("villager1", "mafia1", "https://example.com/a.mp3"))

    accusation = asyncio.run(storage.get_accusation(accusation_id))
    assert accusation.approval_status == ApprovalStatus.PENDING
    assert not accusation.trial_started

    trial = asyncio.run(engine.trials.approve_accusation(accusation_id))

    accusation = asyncio.run(storage.get_accusation(accusation_id))
    assert accusation.approval_status == ApprovalStatus.APPROVED
    assert accusation.trial_started
    assert accusation.trial_id == trial.trial_id
    assert accusation.approval_time is not None

    trial = asyncio.run(engine.trials.get_trial(trial.trial_id))
    assert trial.status == TrialStatus.ACTIVE
    assert trial.guilty_tally == 0
    assert trial.not_guilty_tally == 0
    assert trial.accused_id == "mafia1"
    assert trial.audio_evidence_url == "https://example.com/a.mp3"
    assert trial.voting_deadline - trial.start_time == 24 * 3600


def test_approval_seats_jury_and_records_accused(engine, day_game, storage):
    accuse_and_approve(engine, "villager1", "mafia1")

    jurors = {p.player_id for p in asyncio.run(storage.list_players()) if p.is_jury_member}
    assert jurors == {"doctor1", "detective1", "sheriff1", "villager1", "villager2", "villager3"}
    state = asyncio.run(engine.phase.get_game_state())
    assert state.last_accused_player_id == "mafia1"


def test_dead_players_are_not_seated(engine, make_game, town_roles, load_player):
    make_game(town_roles, phase=GamePhase.DAY, extras={"villager3": {"status": PlayerStatus.DEAD}})

    accuse_and_approve(engine, "villager1", "mafia1")

    assert not load_player("villager3").is_jury_member


def test_self_accusation_is_rejected(engine, day_game):
    with pytest.raises(ValidationError):
        asyncio.run(engine.trials.submit_accusation("villager1", "villager1", None))


def test_accusing_unknown_player(engine, day_game):
    with pytest.raises(NotFoundError):
        asyncio.run(engine.trials.submit_accusation("villager1", "ghost", None))


def test_duplicate_accusations_are_allowed(engine, day_game):
    first = asyncio.run(engine.trials.submit_accusation("villager1", "mafia1", None))
    second = asyncio.run(engine.trials.submit_accusation("villager2", "mafia1", None))

    assert first != second
    assert len(asyncio.run(engine.trials.pending_accusations())) == 2


def test_rejected_accusation_is_final(engine, day_game):
    accusation_id = asyncio.run(engine.trials.submit_accusation("villager1", "mafia1", None))

    accusation = asyncio.run(engine.trials.reject_accusation(accusation_id))

    assert accusation.approval_status == ApprovalStatus.REJECTED
    assert accusation.approval_time is not None
    assert asyncio.run(engine.trials.pending_accusations()) == []
    with pytest.raises(ForbiddenError):
        asyncio.run(engine.trials.approve_accusation(accusation_id))
    with pytest.raises(ForbiddenError):
        asyncio.run(engine.trials.reject_accusation(accusation_id))


def test_approving_twice_is_forbidden(engine, day_game):
    accusation_id = asyncio.run(engine.trials.submit_accusation("villager1", "mafia1", None))
    asyncio.run(engine.trials.approve_accusation(accusation_id))

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.trials.approve_accusation(accusation_id))


def test_unknown_accusation(engine, day_game):
    with pytest.raises(NotFoundError):
        asyncio.run(engine.trials.approve_accusation("ACC_missing"))


def test_second_active_trial_is_refused(engine, day_game, storage):
    accuse_and_approve(engine, "villager1", "mafia1")
    waiting = asyncio.run(engine.trials.submit_accusation("villager2", "villager3", None))

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.trials.approve_accusation(waiting))

    assert asyncio.run(storage.get_accusation(waiting)).approval_status == ApprovalStatus.PENDING
    assert len(asyncio.run(storage.list_trials(TrialStatus.ACTIVE))) == 1


def test_accused_who_died_cannot_be_tried(engine, day_game, storage, load_player):
    accusation_id = asyncio.run(engine.trials.submit_accusation("villager1", "villager2", None))
    asyncio.run(engine.registry.update_player("villager2", status=PlayerStatus.DEAD))

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.trials.approve_accusation(accusation_id))

    assert asyncio.run(storage.get_accusation(accusation_id)).approval_status == ApprovalStatus.PENDING
    assert asyncio.run(engine.trials.get_active_trial()) is None
    assert not load_player("villager1").is_jury_member


def test_guilty_verdict_kills_accused(engine, day_game, load_player):
    trial = accuse_and_approve(engine, "mafia1", "villager1")
    asyncio.run(engine.jury.cast_vote("villager2", trial.trial_id, VoteType.GUILTY))

    verdict = asyncio.run(engine.trials.resolve_trial(trial.trial_id))

    assert verdict == Verdict.GUILTY
    assert load_player("villager1").status == PlayerStatus.DEAD
    assert not any(load_player(pid).is_jury_member for pid in ("doctor1", "villager3", "mafia1"))

    trial = asyncio.run(engine.trials.get_trial(trial.trial_id))
    assert trial.status == TrialStatus.RESOLVED
    assert trial.verdict == Verdict.GUILTY
    assert trial.resolved_time is not None
    assert asyncio.run(engine.trials.get_active_trial()) is None

    recap = asyncio.run(engine.night_resolver.nightly_recap(1))
    assert recap.trial_results == [{"accused_player_id": "villager1", "result": "GUILTY"}]

    with pytest.raises(ForbiddenError):
        asyncio.run(engine.trials.resolve_trial(trial.trial_id))


def test_tie_is_not_guilty(engine, day_game, load_player):
    trial = accuse_and_approve(engine, "villager1", "mafia1")
    asyncio.run(engine.jury.cast_vote("villager2", trial.trial_id, VoteType.GUILTY))
    asyncio.run(engine.jury.cast_vote("villager3", trial.trial_id, VoteType.NOT_GUILTY))

    assert asyncio.run(engine.trials.resolve_trial(trial.trial_id)) == Verdict.NOT_GUILTY
    assert load_player("mafia1").is_alive


def test_no_votes_is_not_guilty(engine, day_game):
    trial = accuse_and_approve(engine, "villager1", "mafia1")

    assert asyncio.run(engine.trials.resolve_trial(trial.trial_id)) == Verdict.NOT_GUILTY


def test_convicting_last_mafia_ends_game(engine, day_game):
    trial = accuse_and_approve(engine, "villager1", "mafia1")
    asyncio.run(engine.jury.cast_vote("villager2", trial.trial_id, VoteType.GUILTY))

    asyncio.run(engine.trials.resolve_trial(trial.trial_id))

    state = asyncio.run(engine.phase.get_game_state())
    assert state.phase == GamePhase.GAME_OVER
    assert state.winner == Team.TOWN


def test_convicted_jester_wins(engine, make_game):
    make_game(
        {"mafia1": Role.MAFIA, "jester1": Role.JESTER, "villager1": Role.VILLAGER, "villager2": Role.VILLAGER},
        phase=GamePhase.DAY,
    )
    trial = accuse_and_approve(engine, "villager1", "jester1")
    asyncio.run(engine.jury.cast_vote("villager1", trial.trial_id, VoteType.GUILTY))

    asyncio.run(engine.trials.resolve_trial(trial.trial_id))

    state = asyncio.run(engine.phase.get_game_state())
    assert state.winner == Team.JESTER
    assert state.phase == GamePhase.GAME_OVER


def test_resolve_expired_trials(engine, day_game):
    trial = accuse_and_approve(engine, "villager1", "mafia1")

    assert asyncio.run(engine.trials.resolve_expired_trials(now_ts=trial.start_time)) == []

    results = asyncio.run(engine.trials.resolve_expired_trials(now_ts=trial.voting_deadline))

    assert results == [(trial.trial_id, Verdict.NOT_GUILTY)]
    assert asyncio.run(engine.trials.get_trial(trial.trial_id)).status == TrialStatus.RESOLVED


def test_new_trial_after_resolution(engine, day_game):
    first = accuse_and_approve(engine, "villager1", "villager2")
    asyncio.run(engine.trials.resolve_trial(first.trial_id))

    second = accuse_and_approve(engine, "villager1", "villager3")

    assert asyncio.run(engine.trials.get_active_trial()).trial_id == second.trial_id
