"""Data models used for giveaway persistence and runtime state."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Dict, Iterable, List, Optional

DEFAULT_TITLE = "Untitled Giveaway"
DEFAULT_DURATION_MS = 3_600_000


class EntryMode(str, enum.Enum):
    BUTTON = "button"
    REACTION = "reaction"
    TRIVIA = "trivia"
    COMPETITION = "competition"


class PendingStatus(str, enum.Enum):
    DRAFT = "draft"
    READY = "ready"


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _int_list(values: Optional[Iterable]) -> List[int]:
    return [int(value) for value in values or []]


def _unique(values: Iterable[int]) -> List[int]:
    seen: set[int] = set()
    result: List[int] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def normalize_attempts(value: Optional[int]) -> int:
    """Map unset, zero or negative attempt limits to -1 (unlimited)."""
    if value is None or value <= 0:
        return -1
    return int(value)


@dataclass(slots=True)
class Giveaway:
    """A live, finished or cancelled giveaway with its participants and results."""
    id: str
    guild_id: int
    channel_id: int
    message_id: int
    title: str
    prizes: List[str]
    start_time: datetime
    end_time: datetime
    creator_id: int
    entry_mode: EntryMode = EntryMode.BUTTON
    winner_count: int = 1
    participants: List[int] = field(default_factory=list)
    winners: List[int] = field(default_factory=list)
    ended: bool = False
    cancelled: bool = False
    trivia_question: Optional[str] = None
    trivia_answer: Optional[str] = None
    max_trivia_attempts: int = -1
    reaction_identifier: Optional[str] = None
    reaction_display_emoji: Optional[str] = None
    required_roles: List[int] = field(default_factory=list)
    blocked_roles: List[int] = field(default_factory=list)
    competition_placements: Dict[int, int] = field(default_factory=dict)
    live_leaderboard: bool = True
    claimed_prizes: List[int] = field(default_factory=list)
    prize_assignments: Dict[int, str] = field(default_factory=dict)

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """Return True while entries are still accepted."""
        now = now or datetime.now(tz=UTC)
        return not self.ended and not self.cancelled and self.end_time > now

    @property
    def is_finished(self) -> bool:
        """Ended normally, with winners (possibly none) already selected."""
        return self.ended and not self.cancelled

    def placement_of(self, user_id: int) -> Optional[int]:
        return self.competition_placements.get(user_id)

    def sorted_placements(self) -> list[tuple[int, int]]:
        """Return (user_id, placement) pairs ordered by placement."""
        return sorted(self.competition_placements.items(), key=lambda item: item[1])

    def to_payload(self) -> dict:
        """Serialize the giveaway to a JSON-serialisable structure."""
        return {
            "id": self.id,
            "guild_id": self.guild_id,
            "channel_id": self.channel_id,
            "message_id": self.message_id,
            "title": self.title,
            "prizes": list(self.prizes),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "creator_id": self.creator_id,
            "entry_mode": self.entry_mode.value,
            "winner_count": self.winner_count,
            "participants": list(self.participants),
            "winners": list(self.winners),
            "ended": self.ended,
            "cancelled": self.cancelled,
            "trivia_question": self.trivia_question,
            "trivia_answer": self.trivia_answer,
            "max_trivia_attempts": self.max_trivia_attempts,
            "reaction_identifier": self.reaction_identifier,
            "reaction_display_emoji": self.reaction_display_emoji,
            "required_roles": list(self.required_roles),
            "blocked_roles": list(self.blocked_roles),
            "competition_placements": {
                str(user_id): placement
                for user_id, placement in self.competition_placements.items()
            },
            "live_leaderboard": self.live_leaderboard,
            "claimed_prizes": list(self.claimed_prizes),
            "prize_assignments": {
                str(user_id): prize for user_id, prize in self.prize_assignments.items()
            },
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "Giveaway":
        """Reconstruct a Giveaway from serialized payload data."""
        return cls(
            id=str(payload["id"]),
            guild_id=int(payload["guild_id"]),
            channel_id=int(payload["channel_id"]),
            message_id=int(payload.get("message_id") or 0),
            title=str(payload.get("title") or DEFAULT_TITLE),
            prizes=[str(prize) for prize in payload.get("prizes", [])],
            start_time=_parse_instant(payload["start_time"]),
            end_time=_parse_instant(payload["end_time"]),
            creator_id=int(payload.get("creator_id") or 0),
            entry_mode=EntryMode(payload.get("entry_mode", EntryMode.BUTTON.value)),
            winner_count=int(payload.get("winner_count", 1)),
            participants=_unique(_int_list(payload.get("participants"))),
            winners=_int_list(payload.get("winners")),
            ended=bool(payload.get("ended", False)),
            cancelled=bool(payload.get("cancelled", False)),
            trivia_question=payload.get("trivia_question"),
            trivia_answer=payload.get("trivia_answer"),
            max_trivia_attempts=normalize_attempts(payload.get("max_trivia_attempts")),
            reaction_identifier=payload.get("reaction_identifier"),
            reaction_display_emoji=payload.get("reaction_display_emoji"),
            required_roles=_int_list(payload.get("required_roles")),
            blocked_roles=_int_list(payload.get("blocked_roles")),
            competition_placements={
                int(user_id): int(placement)
                for user_id, placement in (payload.get("competition_placements") or {}).items()
            },
            live_leaderboard=bool(payload.get("live_leaderboard", True)),
            claimed_prizes=_int_list(payload.get("claimed_prizes")),
            prize_assignments={
                int(user_id): str(prize)
                for user_id, prize in (payload.get("prize_assignments") or {}).items()
            },
        )


@dataclass(slots=True)
class PendingGiveaway:
    """A draft giveaway being configured before it is announced."""
    id: str
    guild_id: int
    created_by: int
    created_at: datetime
    title: str = DEFAULT_TITLE
    prizes: List[str] = field(default_factory=list)
    duration_ms: int = DEFAULT_DURATION_MS
    winner_count: int = 1
    entry_mode: EntryMode = EntryMode.BUTTON
    trivia_question: Optional[str] = None
    trivia_answer: Optional[str] = None
    max_trivia_attempts: int = -1
    reaction_identifier: Optional[str] = None
    reaction_display_emoji: Optional[str] = None
    required_roles: List[int] = field(default_factory=list)
    blocked_roles: List[int] = field(default_factory=list)
    live_leaderboard: bool = True
    pinned_ready: bool = False

    @property
    def status(self) -> PendingStatus:
        return derive_status(self)

    def to_payload(self) -> dict:
        """Serialize to a JSON-friendly mapping."""
        return {
            "id": self.id,
            "guild_id": self.guild_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "title": self.title,
            "prizes": list(self.prizes),
            "duration_ms": self.duration_ms,
            "winner_count": self.winner_count,
            "entry_mode": self.entry_mode.value,
            "trivia_question": self.trivia_question,
            "trivia_answer": self.trivia_answer,
            "max_trivia_attempts": self.max_trivia_attempts,
            "reaction_identifier": self.reaction_identifier,
            "reaction_display_emoji": self.reaction_display_emoji,
            "required_roles": list(self.required_roles),
            "blocked_roles": list(self.blocked_roles),
            "live_leaderboard": self.live_leaderboard,
            "pinned_ready": self.pinned_ready,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "PendingGiveaway":
        """Deserialize a draft from stored state; the stored status is ignored."""
        return cls(
            id=str(payload["id"]),
            guild_id=int(payload["guild_id"]),
            created_by=int(payload.get("created_by") or 0),
            created_at=_parse_instant(payload["created_at"]),
            title=str(payload.get("title") or DEFAULT_TITLE),
            prizes=[str(prize) for prize in payload.get("prizes", [])],
            duration_ms=int(payload.get("duration_ms") or 0),
            winner_count=int(payload.get("winner_count") or 0),
            entry_mode=EntryMode(payload.get("entry_mode", EntryMode.BUTTON.value)),
            trivia_question=payload.get("trivia_question"),
            trivia_answer=payload.get("trivia_answer"),
            max_trivia_attempts=normalize_attempts(payload.get("max_trivia_attempts")),
            reaction_identifier=payload.get("reaction_identifier"),
            reaction_display_emoji=payload.get("reaction_display_emoji"),
            required_roles=_int_list(payload.get("required_roles")),
            blocked_roles=_int_list(payload.get("blocked_roles")),
            live_leaderboard=bool(payload.get("live_leaderboard", True)),
            pinned_ready=bool(payload.get("pinned_ready", False)),
        )


def derive_status(pending: PendingGiveaway) -> PendingStatus:
    """Compute the draft status from field completeness."""
    # Imported lazily: validation depends on models.
    from .validation import is_ready_to_start

    if pending.pinned_ready or is_ready_to_start(pending):
        return PendingStatus.READY
    return PendingStatus.DRAFT
