"""Entry admission control and draft readiness checks."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Iterable, Optional, Union

from .durations import DAY_MS, parse_duration
from .models import DEFAULT_TITLE, EntryMode, Giveaway, PendingGiveaway

if TYPE_CHECKING:
    from .records import RecordStore

DEFAULT_MAX_DURATION_MS = 30 * DAY_MS


class RejectionReason(str, enum.Enum):
    NOT_FOUND = "not_found"
    WRONG_MODE = "wrong_mode"
    CLOSED = "closed"
    MISSING_ROLE = "missing_role"
    BLOCKED_ROLE = "blocked_role"
    COMPETITION_FULL = "competition_full"
    ALREADY_PLACED = "already_placed"
    NO_ATTEMPTS_LEFT = "no_attempts_left"
    ALREADY_ENTERED = "already_entered"


@dataclass(frozen=True, slots=True)
class EntryRejection:
    """A refused entry attempt; ``message`` is shown to the user verbatim."""
    reason: RejectionReason
    message: str


EntryResult = Union[Giveaway, EntryRejection]


def placement_emoji(placement: int) -> str:
    return {0: "🥇", 1: "🥈", 2: "🥉"}.get(placement, "🎗️")


def placement_text(placement: int) -> str:
    """Return e.g. ``"🥇 1st"`` for a zero-based placement."""
    ordinal = {0: "1st", 1: "2nd", 2: "3rd"}.get(placement, f"{placement + 1}th")
    return f"{placement_emoji(placement)} {ordinal}"


async def validate_entry(
    store: "RecordStore",
    giveaway_id: str,
    guild_id: int,
    user_id: int,
    role_ids: Iterable[int],
    expected_mode: EntryMode,
    *,
    check_attempts: bool = False,
    now: Optional[datetime] = None,
) -> EntryResult:
    """Validate an entry attempt and return the live giveaway or a rejection.

    Checks run in a fixed order and stop at the first failure. Nothing is
    written, whatever the outcome.
    """
    giveaway = await store.get(giveaway_id, guild_id)
    if giveaway is None:
        return EntryRejection(
            RejectionReason.NOT_FOUND,
            "This giveaway could not be found. It may have been deleted.",
        )

    if giveaway.entry_mode is not expected_mode:
        return EntryRejection(
            RejectionReason.WRONG_MODE,
            f"This giveaway does not use {expected_mode.value} entry.",
        )

    if not giveaway.is_open(now or datetime.now(tz=UTC)):
        return EntryRejection(RejectionReason.CLOSED, "This giveaway is no longer active.")

    roles = {int(role_id) for role_id in role_ids}
    if giveaway.required_roles and not roles.intersection(giveaway.required_roles):
        return EntryRejection(
            RejectionReason.MISSING_ROLE,
            "You don't have one of the required roles to enter this giveaway.",
        )
    if giveaway.blocked_roles and roles.intersection(giveaway.blocked_roles):
        return EntryRejection(
            RejectionReason.BLOCKED_ROLE,
            "You have a role that is blocked from entering this giveaway.",
        )

    if giveaway.entry_mode is EntryMode.COMPETITION:
        if len(giveaway.competition_placements) >= giveaway.winner_count:
            return EntryRejection(
                RejectionReason.COMPETITION_FULL,
                "This competition has already found all its winners!",
            )
        placement = giveaway.placement_of(user_id)
        if placement is not None:
            return EntryRejection(
                RejectionReason.ALREADY_PLACED,
                f"You already placed {placement_text(placement)} in this competition!",
            )

    if check_attempts and giveaway.max_trivia_attempts > 0:
        attempts = await store.get_trivia_attempts(giveaway.id, user_id, guild_id)
        if attempts >= giveaway.max_trivia_attempts:
            return EntryRejection(
                RejectionReason.NO_ATTEMPTS_LEFT,
                f"You have no more attempts left. (Max: {giveaway.max_trivia_attempts})",
            )

    if user_id in giveaway.participants:
        if giveaway.entry_mode is EntryMode.TRIVIA:
            return EntryRejection(
                RejectionReason.ALREADY_ENTERED,
                "You have already successfully answered the trivia for this giveaway!",
            )
        if giveaway.entry_mode is EntryMode.BUTTON:
            return EntryRejection(
                RejectionReason.ALREADY_ENTERED,
                "You are already entered in this giveaway!",
            )

    return giveaway


# --- Draft readiness -------------------------------------------------------


def missing_fields(pending: Optional[PendingGiveaway]) -> Optional[str]:
    """Return a message naming the first required field that is not set."""
    if pending is None:
        return "Giveaway not found. It may have been deleted."
    if not pending.title or pending.title == DEFAULT_TITLE:
        return "Please set a title for the giveaway."
    if not pending.prizes or not pending.prizes[0].strip():
        return "Please set a prize description."
    if not pending.duration_ms or pending.duration_ms <= 0:
        return "Please set a valid duration for the giveaway."
    if not pending.winner_count or pending.winner_count <= 0:
        return "Please set a valid number of winners."
    if pending.entry_mode in (EntryMode.TRIVIA, EntryMode.COMPETITION):
        label = pending.entry_mode.value
        if not pending.trivia_question:
            return f"For {label} mode, please set a question."
        if not pending.trivia_answer:
            return f"For {label} mode, please set an answer."
    if pending.entry_mode is EntryMode.REACTION and not (
        pending.reaction_identifier and pending.reaction_display_emoji
    ):
        return "For reaction mode, please set a reaction emoji."
    return None


def is_ready_to_start(pending: Optional[PendingGiveaway]) -> bool:
    """Single source of truth for whether a draft has every required field."""
    return missing_fields(pending) is None


# --- Input parsing ---------------------------------------------------------


def parse_winner_count(text: str) -> Optional[int]:
    try:
        count = int(str(text).strip())
    except ValueError:
        return None
    return count if count >= 1 else None


def parse_trivia_attempts(text: str) -> Optional[int]:
    """Parse an attempt limit; zero or negative means unlimited (-1)."""
    try:
        attempts = int(str(text).strip())
    except ValueError:
        return None
    return -1 if attempts <= 0 else attempts


def validate_duration(text: str, max_ms: int = DEFAULT_MAX_DURATION_MS) -> Optional[int]:
    duration_ms = parse_duration(text)
    if duration_ms is None or duration_ms > max_ms:
        return None
    return duration_ms
