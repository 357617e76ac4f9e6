"""Embed formatting for Mafia Nights displays."""

from typing import List, Optional

import discord

from .models import (
    Accusation,
    GamePhase,
    GameState,
    Mission,
    NightRecap,
    Player,
    Team,
    Trial,
    TrialStatus,
    Vote,
)
from .timeutils import format_timestamp, hours_until


GAME_COLOR = 0x2b2d42
DAY_COLOR = 0xf4a261
NIGHT_COLOR = 0x1d3557
ERROR_COLOR = 0xff0000
SUCCESS_COLOR = 0x00ff00

WINNER_LINES = {
    Team.TOWN: "The Town has rooted out every member of the Mafia!",
    Team.MAFIA: "The Mafia now controls the town!",
    Team.JESTER: "The Jester fooled everyone into a conviction!",
}


def mention(player_id: Optional[str]) -> str:
    return f"<@{player_id}>" if player_id else "nobody"


def mention_list(player_ids: List[str]) -> str:
    return ", ".join(mention(pid) for pid in player_ids) if player_ids else "None"


class GameView:
    """Handles formatting of game displays."""

    def format_roster(self, state: GameState, players: List[Player]) -> discord.Embed:
        """Public roster. Roles stay hidden."""
        color = NIGHT_COLOR if state.phase == GamePhase.NIGHT else DAY_COLOR
        embed = discord.Embed(title="🌙 Mafia Nights", color=color)
        embed.add_field(name="Phase", value=f"{state.phase.value} {state.current_day}", inline=True)
        embed.add_field(name="Players", value=str(len(players)), inline=True)

        if not players:
            embed.description = "Nobody has joined yet. Use `/join` to enter the game!"
            return embed

        lines = []
        for player in players:
            marker = "🟢" if player.is_alive else "💀"
            lines.append(f"{marker} **{player.name}**")
        embed.description = "\n".join(lines)

        if state.winner:
            embed.add_field(name="🏆 Winner", value=state.winner.value, inline=False)
        elif state.roster_locked:
            embed.set_footer(text="🔒 Roles are dealt - no new players may join")
        else:
            embed.set_footer(text="✅ Open for new players - use /join to enter!")
        return embed

    def format_status(self, player: Player, mission: Optional[Mission] = None) -> discord.Embed:
        """Private view of a player's own role and abilities."""
        embed = discord.Embed(title=f"🔍 {player.name}", color=GAME_COLOR)
        embed.add_field(name="Role", value=player.role.value, inline=True)
        embed.add_field(name="Status", value=player.status.value, inline=True)
        embed.add_field(name="Voting Power", value=str(player.voting_power), inline=True)

        abilities = [name for name, on in (
            ("Convert", player.can_convert),
            ("Revive", player.can_revive),
            ("Change Role", player.can_change_role),
            ("Reveal Teammate", player.can_reveal_self),
            ("Increase Vote", player.can_increase_vote),
        ) if on]
        embed.add_field(name="Abilities", value=", ".join(abilities) or "None", inline=False)
        embed.add_field(name="Tonight's action", value="Used" if player.main_used else "Available", inline=True)
        embed.add_field(name="Night Vote", value="Cast" if player.night_vote_used else "Available", inline=True)
        embed.add_field(name="Missions Completed", value=str(player.missions_completed), inline=True)

        if mission:
            embed.add_field(name="Current Mission", value=mission.description, inline=False)
        if player.revealed_teammates:
            embed.add_field(name="Known Teammates", value=mention_list(player.revealed_teammates), inline=False)
        if player.is_jury_member:
            embed.set_footer(text="⚖️ You are on the jury. Use /vote before the deadline.")
        return embed

    def format_trial(self, trial: Trial, accused: Optional[Player] = None) -> discord.Embed:
        name = accused.name if accused else trial.accused_id
        embed = discord.Embed(title=f"⚖️ Trial of {name}", color=DAY_COLOR)
        embed.add_field(name="Trial ID", value=trial.trial_id, inline=False)
        embed.add_field(name="Guilty", value=str(trial.guilty_tally), inline=True)
        embed.add_field(name="Not Guilty", value=str(trial.not_guilty_tally), inline=True)

        if trial.status == TrialStatus.ACTIVE:
            remaining = hours_until(trial.voting_deadline)
            embed.add_field(
                name="Deadline",
                value=f"{format_timestamp(trial.voting_deadline)} ({remaining:.1f}h left)",
                inline=False,
            )
        else:
            embed.add_field(name="Verdict", value=trial.verdict.value if trial.verdict else "None", inline=False)
        if trial.audio_evidence_url:
            embed.add_field(name="Evidence", value=trial.audio_evidence_url, inline=False)
        return embed

    def format_recap(self, recap: NightRecap) -> discord.Embed:
        embed = discord.Embed(title=f"🌅 Night {recap.day} Recap", color=NIGHT_COLOR)
        embed.add_field(name="Killed by the Mafia", value=mention_list(recap.mafia_kills), inline=False)
        embed.add_field(name="Saved by the Doctor", value=mention_list(recap.mafia_protected), inline=False)
        embed.add_field(name="Shot by the Sheriff", value=mention_list(recap.sheriff_kills), inline=False)
        if recap.night_vote_leaders:
            embed.add_field(name="Town's Prime Suspect", value=mention_list(recap.night_vote_leaders), inline=False)
        if recap.trial_results:
            lines = [f"{mention(r['accused_player_id'])}: {r['result']}" for r in recap.trial_results]
            embed.add_field(name="Trials", value="\n".join(lines), inline=False)
        if not recap.deaths:
            embed.description = "Nobody died last night."
        return embed

    def format_pending(self, accusations: List[Accusation]) -> discord.Embed:
        embed = discord.Embed(title="📜 Pending Accusations", color=GAME_COLOR)
        if not accusations:
            embed.description = "No accusations are waiting for review."
            return embed
        for accusation in accusations[:25]:
            value = f"{mention(accusation.accuser_id)} accuses {mention(accusation.accused_id)}"
            if accusation.audio_evidence_url:
                value += f"\n[Evidence]({accusation.audio_evidence_url})"
            embed.add_field(name=accusation.accusation_id, value=value, inline=False)
        return embed

    def format_votes(self, votes: List[Vote]) -> discord.Embed:
        embed = discord.Embed(title="🗳️ Your Votes", color=GAME_COLOR)
        if not votes:
            embed.description = "You have not voted in any trial."
            return embed
        embed.description = "\n".join(
            f"`{v.trial_id}` - {v.vote_type.value} x{v.voting_power} ({format_timestamp(v.timestamp)})"
            for v in votes
        )
        return embed

    def format_history(self, history: List[str]) -> discord.Embed:
        embed = discord.Embed(title="🕵️ Investigation History", color=NIGHT_COLOR)
        if not history:
            embed.description = "You have not investigated anyone yet."
            return embed
        lines = []
        for entry in history:
            target_id, _, result = entry.partition(":")
            verdict = "Mafia" if result == "YES" else "not Mafia"
            lines.append(f"{mention(target_id)} - {verdict}")
        embed.description = "\n".join(lines)
        return embed

    def format_game_over(self, winner: Team) -> discord.Embed:
        embed = discord.Embed(
            title=f"🏆 {winner.value} wins!",
            description=WINNER_LINES[winner],
            color=0xffd700,
        )
        embed.add_field(name="🎮 New Game", value="Use `/admin_reset_game` to start a new round!", inline=False)
        return embed

    def format_error(self, message: str) -> discord.Embed:
        """Format an error message."""
        return discord.Embed(title="❌ Error", description=message, color=ERROR_COLOR)

    def format_success(self, message: str) -> discord.Embed:
        """Format a success message."""
        return discord.Embed(title="✅ Success", description=message, color=SUCCESS_COLOR)
