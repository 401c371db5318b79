"""Embeds and display text for giveaway announcements and results.

Prizes are confidential: nothing built here ever shows a prize's text.
Winners see their prize only through the claim button.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import discord

from .durations import format_duration
from .models import EntryMode, Giveaway, PendingGiveaway
from .validation import missing_fields, placement_emoji

ACTIVE_COLOR = discord.Color.blue()
COMPETITION_COLOR = discord.Color.gold()
RESULTS_COLOR = discord.Color.teal()
ENDED_COLOR = discord.Color.dark_gray()
CANCELLED_COLOR = discord.Color.red()

_MODE_DISPLAY = {
    EntryMode.BUTTON: "🔘 Button",
    EntryMode.REACTION: "😀 Reaction",
    EntryMode.TRIVIA: "❓ Trivia",
    EntryMode.COMPETITION: "🏆 Competition",
}


def mode_display(mode: EntryMode) -> str:
    return _MODE_DISPLAY.get(mode, _MODE_DISPLAY[EntryMode.BUTTON])


def prize_display(prizes: Sequence[str], winner_count: int) -> str:
    """Summarise how many prizes are configured without revealing them."""
    configured = len([prize for prize in prizes if prize and prize.strip()])
    if winner_count > 1:
        if configured == 0:
            return f"❌ 0/{winner_count} prizes"
        if configured >= winner_count:
            return f"✅ {configured}/{winner_count} prizes"
        return f"⚠️ {configured}/{winner_count} prizes"
    if configured == 0:
        return "❌ Not Set"
    return "✅ Prize configured"


def attempts_display(attempts: int) -> str:
    return "Unlimited" if attempts <= 0 else str(attempts)


def status_text(giveaway: Giveaway) -> str:
    if giveaway.cancelled:
        return "🚫 Cancelled"
    if giveaway.ended:
        return f"🏁 Ended {discord.utils.format_dt(giveaway.end_time, style='R')}"
    if giveaway.is_open():
        return f"🟢 Ends {discord.utils.format_dt(giveaway.end_time, style='R')}"
    return "⌛ Processing..."


def mentions(user_ids: Iterable[int]) -> str:
    return " ".join(f"<@{user_id}>" for user_id in user_ids)


def leaderboard_text(giveaway: Giveaway) -> str:
    placements = giveaway.sorted_placements()
    if not placements:
        return "*No winners yet*"
    return "\n".join(
        f"{placement_emoji(placement)} <@{user_id}>" for user_id, placement in placements
    )


def _entry_instructions(giveaway: Giveaway) -> str:
    description = "A new giveaway has started!"
    if giveaway.entry_mode is EntryMode.BUTTON:
        description += "\nClick the button below to participate."
    elif giveaway.entry_mode is EntryMode.REACTION:
        description += f"\nReact with {giveaway.reaction_display_emoji} to participate."
    elif giveaway.entry_mode is EntryMode.TRIVIA:
        description += "\nAnswer the trivia question to participate."
    elif giveaway.entry_mode is EntryMode.COMPETITION:
        description += (
            f"\n🏆 **Competition Mode** - First {giveaway.winner_count} "
            "correct answers win!"
        )
    if (
        giveaway.entry_mode in (EntryMode.TRIVIA, EntryMode.COMPETITION)
        and giveaway.max_trivia_attempts > 0
    ):
        description += f" *You have {giveaway.max_trivia_attempts} attempt(s).*"
    return description


def build_announcement_embed(
    giveaway: Giveaway, *, creator_name: Optional[str] = None
) -> discord.Embed:
    color = (
        COMPETITION_COLOR if giveaway.entry_mode is EntryMode.COMPETITION else ACTIVE_COLOR
    )
    embed = discord.Embed(
        title=f"🎉 {giveaway.title} 🎉",
        description=_entry_instructions(giveaway),
        color=color,
    )
    embed.add_field(name="Winners", value=str(giveaway.winner_count), inline=True)
    embed.add_field(
        name="Ends", value=discord.utils.format_dt(giveaway.end_time, style="R"), inline=True
    )
    if giveaway.entry_mode in (EntryMode.TRIVIA, EntryMode.COMPETITION):
        label = (
            "Competition Question"
            if giveaway.entry_mode is EntryMode.COMPETITION
            else "Trivia Question"
        )
        embed.add_field(name=label, value=giveaway.trivia_question or "-", inline=False)
    if giveaway.entry_mode is EntryMode.COMPETITION and giveaway.live_leaderboard:
        embed.add_field(name="🏆 Leaderboard", value=leaderboard_text(giveaway), inline=False)
    footer = f"Giveaway ID: {giveaway.id}"
    if creator_name:
        footer = f"Started by {creator_name} • {footer}"
    embed.set_footer(text=footer)
    return embed


def results_content(giveaway: Giveaway, winner_ids: Sequence[int]) -> Optional[str]:
    """Plain-text part of the results message so that winners are pinged."""
    if not winner_ids:
        return None
    return f"🎊 **Congratulations** {mentions(winner_ids)}!"


def build_results_embed(giveaway: Giveaway, winner_ids: Sequence[int]) -> discord.Embed:
    is_competition = giveaway.entry_mode is EntryMode.COMPETITION
    if is_competition:
        title = f"🏆 Competition Ended: {giveaway.title} 🏆"
    else:
        title = f"🎉 Giveaway Ended: {giveaway.title} 🎉"
    embed = discord.Embed(
        title=title,
        color=COMPETITION_COLOR if is_competition else RESULTS_COLOR,
    )
    if winner_ids:
        embed.description = "Click the button below to claim your prize."
        if is_competition:
            placements = giveaway.competition_placements
            lines: List[str] = [
                f"{placement_emoji(placements.get(user_id, index))} <@{user_id}>"
                for index, user_id in enumerate(winner_ids)
            ]
            embed.add_field(name="🏆 Final Standings", value="\n".join(lines), inline=False)
        else:
            embed.add_field(
                name="🏆 Winners",
                value=", ".join(f"<@{user_id}>" for user_id in winner_ids),
                inline=False,
            )
    else:
        embed.description = (
            "*Unfortunately, there were no participants in this giveaway, "
            "so no winner could be chosen.*"
        )
    concluded = "Competition" if is_competition else "Giveaway"
    embed.set_footer(text=f"{concluded} Concluded • Giveaway ID: {giveaway.id}")
    embed.timestamp = giveaway.end_time
    return embed


def build_original_ended_embed(
    giveaway: Giveaway, results_url: Optional[str] = None
) -> discord.Embed:
    description = "*This giveaway has ended!*"
    if results_url:
        description = f"*This giveaway has ended! [View Results]({results_url})*"
    embed = discord.Embed(
        title=f"🎉 {giveaway.title} 🎉", description=description, color=ENDED_COLOR
    )
    embed.set_footer(text=f"Ended • Giveaway ID: {giveaway.id}")
    embed.timestamp = giveaway.end_time
    return embed


def build_cancelled_embed(giveaway: Giveaway) -> discord.Embed:
    embed = discord.Embed(
        title=f"🚫 Giveaway Cancelled: {giveaway.title} 🚫",
        description="*This giveaway has been cancelled.*",
        color=CANCELLED_COLOR,
    )
    embed.set_footer(text=f"Cancelled • Giveaway ID: {giveaway.id}")
    embed.timestamp = discord.utils.utcnow()
    return embed


def build_pending_embed(pending: PendingGiveaway) -> discord.Embed:
    """Summary of a draft for its creator; prize text stays hidden."""
    embed = discord.Embed(
        title=f"📝 {pending.title}",
        description=missing_fields(pending) or "Ready to start.",
        color=ACTIVE_COLOR,
    )
    embed.add_field(name="Status", value=pending.status.value.title(), inline=True)
    embed.add_field(name="Mode", value=mode_display(pending.entry_mode), inline=True)
    embed.add_field(name="Winners", value=str(pending.winner_count), inline=True)
    embed.add_field(name="Duration", value=format_duration(pending.duration_ms), inline=True)
    embed.add_field(
        name="Prizes", value=prize_display(pending.prizes, pending.winner_count), inline=True
    )
    if pending.entry_mode in (EntryMode.TRIVIA, EntryMode.COMPETITION):
        embed.add_field(
            name="Attempts", value=attempts_display(pending.max_trivia_attempts), inline=True
        )
    if pending.entry_mode is EntryMode.REACTION:
        embed.add_field(
            name="Reaction", value=pending.reaction_display_emoji or "Not Set", inline=True
        )
    embed.set_footer(text=f"Draft ID: {pending.id}")
    return embed


def giveaway_list_line(giveaway: Giveaway) -> str:
    return (
        f"**{giveaway.title}** (`{giveaway.id}`) • {mode_display(giveaway.entry_mode)} • "
        f"{len(giveaway.participants)} entries • {status_text(giveaway)}"
    )
