"""
Tests for embed formatting and user-facing error text.
"""

from unittest.mock import Mock

from error_handler import ErrorHandler
from mafiagame.errors import ConflictError, ForbiddenError
from mafiagame.models import GamePhase, GameState, NightRecap, Player, PlayerStatus, Role, Team
from mafiagame.view import GameView


def test_recap_lists_deaths_and_saves():
    recap = NightRecap(day=2, mafia_kills=["1"], mafia_protected=["2"], sheriff_kills=["3"])

    embed = GameView().format_recap(recap)

    fields = {f.name: f.value for f in embed.fields}
    assert embed.title == "🌅 Night 2 Recap"
    assert fields["Killed by the Mafia"] == "<@1>"
    assert fields["Saved by the Doctor"] == "<@2>"
    assert fields["Shot by the Sheriff"] == "<@3>"
    assert embed.description is None


def test_quiet_night():
    embed = GameView().format_recap(NightRecap(day=1))

    assert embed.description == "Nobody died last night."


def test_roster_hides_roles():
    state = GameState(current_day=3, phase=GamePhase.NIGHT, roster_locked=True)
    players = [
        Player("1", "Ada", role=Role.MAFIA),
        Player("2", "Bob", status=PlayerStatus.DEAD),
    ]

    embed = GameView().format_roster(state, players)

    assert "Mafia" not in embed.description
    assert "💀 **Bob**" in embed.description


def test_history_reads_results():
    embed = GameView().format_history(["1:YES", "2:NO"])

    assert embed.description == "<@1> - Mafia\n<@2> - not Mafia"


def test_game_over_banner():
    embed = GameView().format_game_over(Team.JESTER)

    assert embed.title == "🏆 Jester wins!"


def test_error_text_for_game_errors():
    handler = ErrorHandler(Mock(), owner_id=1)

    assert handler.describe(ForbiddenError("Only a Doctor can do that.")) == "Only a Doctor can do that."
    assert "busy" in handler.describe(ConflictError("players row p1 changed"))
    assert "bot owner" in handler.describe(RuntimeError("boom"))


def test_recap_shows_prime_suspect_only_after_a_night_vote():
    view = GameView()

    voted = {f.name: f.value for f in view.format_recap(NightRecap(day=1, night_vote_leaders=["4"])).fields}
    quiet = {f.name for f in view.format_recap(NightRecap(day=1)).fields}

    assert voted["Town's Prime Suspect"] == "<@4>"
    assert "Town's Prime Suspect" not in quiet
