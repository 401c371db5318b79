"""Giveaway, draft and per-user entry records backed by module storage."""

from __future__ import annotations

import logging
import uuid
from dataclasses import fields
from datetime import UTC, datetime
from typing import Any, Optional

from .cache import GiveawayCache
from .models import (
    EntryMode,
    Giveaway,
    PendingGiveaway,
    PendingStatus,
    normalize_attempts,
)
from .storage import ModuleStorage

log = logging.getLogger(__name__)

MODULE_NAMESPACE = "giveaway"
GIVEAWAYS_FILE = "giveaways"
PENDING_FILE = "pending-giveaways"
USER_DATA_FILE = "user-giveaway-data"

_GIVEAWAY_FIELDS = frozenset(f.name for f in fields(Giveaway))
_PENDING_FIELDS = frozenset(f.name for f in fields(PendingGiveaway)) - {
    "id",
    "guild_id",
    "created_by",
    "created_at",
}


def generate_id() -> str:
    return str(uuid.uuid4())


class RecordStore:
    """CRUD over persisted giveaways with a lazily filled per-guild cache.

    Every mutation writes through to storage before returning.
    """

    def __init__(self, storage: ModuleStorage, cache: GiveawayCache) -> None:
        self.storage = storage
        self.cache = cache

    # --- Giveaways --------------------------------------------------------

    async def _load(self, guild_id: int, *, force_reload: bool = False) -> list[Giveaway]:
        if self.cache.is_loaded(guild_id) and not force_reload:
            return self.cache.get_giveaways(guild_id)
        payload = await self.storage.load(GIVEAWAYS_FILE, guild_id, MODULE_NAMESPACE, [])
        giveaways = []
        for entry in payload:
            try:
                giveaways.append(Giveaway.from_payload(entry))
            except (KeyError, TypeError, ValueError):
                log.exception("Skipping unreadable giveaway record in guild %s", guild_id)
        self.cache.set_giveaways(guild_id, giveaways)
        return giveaways

    async def _save(self, guild_id: int) -> None:
        giveaways = self.cache.get_giveaways(guild_id)
        await self.storage.save(
            GIVEAWAYS_FILE,
            guild_id,
            MODULE_NAMESPACE,
            [giveaway.to_payload() for giveaway in giveaways],
        )

    async def get(self, giveaway_id: str, guild_id: int) -> Optional[Giveaway]:
        for giveaway in await self._load(guild_id):
            if giveaway.id == giveaway_id:
                return giveaway
        return None

    async def add(self, giveaway: Giveaway, guild_id: int) -> Optional[Giveaway]:
        """Insert a new giveaway; returns None when the id is already taken."""
        if giveaway.winner_count < 1:
            raise ValueError("winner_count must be at least 1")
        if giveaway.end_time <= giveaway.start_time:
            raise ValueError("end_time must be after start_time")

        async with self.cache.guild_lock(guild_id):
            giveaways = await self._load(guild_id)
            if any(existing.id == giveaway.id for existing in giveaways):
                log.warning("Rejected giveaway with duplicate ID: %s", giveaway.id)
                return None
            if giveaway.entry_mode in (EntryMode.TRIVIA, EntryMode.COMPETITION):
                giveaway.max_trivia_attempts = normalize_attempts(giveaway.max_trivia_attempts)
            giveaways.append(giveaway)
            await self._save(guild_id)

        log.info("Added new giveaway: %s (%s)", giveaway.id, giveaway.title)
        return giveaway

    async def update(self, giveaway_id: str, guild_id: int, **changes: Any) -> bool:
        """Apply ``changes`` to a stored giveaway in one write."""
        unknown = set(changes) - _GIVEAWAY_FIELDS
        if unknown:
            raise ValueError(f"Unknown giveaway field(s): {', '.join(sorted(unknown))}")
        giveaway = await self.get(giveaway_id, guild_id)
        if giveaway is None:
            return False
        if giveaway.ended and changes.get("ended") is False:
            raise ValueError("An ended giveaway cannot be reopened")
        for name, value in changes.items():
            setattr(giveaway, name, value)
        await self._save(guild_id)
        return True

    async def remove(self, giveaway_id: str, guild_id: int) -> bool:
        """Delete a giveaway and disarm its timer."""
        giveaways = await self._load(guild_id)
        self.cache.clear_timer(giveaway_id)
        remaining = [giveaway for giveaway in giveaways if giveaway.id != giveaway_id]
        if len(remaining) == len(giveaways):
            return False
        self.cache.set_giveaways(guild_id, remaining)
        await self._save(guild_id)
        await self.clear_user_data(giveaway_id, guild_id)
        self.cache.forget_lock(giveaway_id)
        log.info("Removed giveaway %s from guild %s", giveaway_id, guild_id)
        return True

    async def list_all(self, guild_id: int, active_only: bool = False) -> list[Giveaway]:
        """Return giveaways newest first, optionally only those still open."""
        giveaways = list(await self._load(guild_id))
        if active_only:
            now = datetime.now(tz=UTC)
            giveaways = [giveaway for giveaway in giveaways if giveaway.is_open(now)]
        return sorted(giveaways, key=lambda giveaway: giveaway.start_time, reverse=True)

    async def add_participant(self, giveaway_id: str, user_id: int, guild_id: int) -> bool:
        # Shares the ending lock so nobody joins after winners are drawn.
        async with self.cache.lock_for(giveaway_id):
            giveaway = await self.get(giveaway_id, guild_id)
            if giveaway is None or not giveaway.is_open():
                return False
            if user_id in giveaway.participants:
                return False
            return await self.update(
                giveaway_id, guild_id, participants=[*giveaway.participants, user_id]
            )

    async def load_active_uncached(self, guild_id: int) -> list[Giveaway]:
        """Read open (not ended, not cancelled) giveaways straight from storage."""
        payload = await self.storage.load(GIVEAWAYS_FILE, guild_id, MODULE_NAMESPACE, [])
        active = []
        for entry in payload:
            try:
                giveaway = Giveaway.from_payload(entry)
            except (KeyError, TypeError, ValueError):
                log.exception("Skipping unreadable giveaway record in guild %s", guild_id)
                continue
            if not giveaway.ended and not giveaway.cancelled:
                active.append(giveaway)
        return active

    def clear_cache(self, guild_id: int) -> None:
        self.cache.invalidate(guild_id)

    # --- Drafts -----------------------------------------------------------

    async def _load_pending(self, guild_id: int) -> list[PendingGiveaway]:
        payload = await self.storage.load(PENDING_FILE, guild_id, MODULE_NAMESPACE, [])
        return [PendingGiveaway.from_payload(entry) for entry in payload]

    async def _save_pending(self, guild_id: int, drafts: list[PendingGiveaway]) -> None:
        await self.storage.save(
            PENDING_FILE,
            guild_id,
            MODULE_NAMESPACE,
            [draft.to_payload() for draft in drafts],
        )

    async def create_pending(
        self, guild_id: int, user_id: int, **initial: Any
    ) -> PendingGiveaway:
        unknown = set(initial) - _PENDING_FIELDS
        if unknown:
            raise ValueError(f"Unknown draft field(s): {', '.join(sorted(unknown))}")
        pending = PendingGiveaway(
            id=generate_id(),
            guild_id=guild_id,
            created_by=user_id,
            created_at=datetime.now(tz=UTC),
            **initial,
        )
        drafts = await self._load_pending(guild_id)
        drafts.append(pending)
        await self._save_pending(guild_id, drafts)
        log.info("Created draft giveaway %s in guild %s", pending.id, guild_id)
        return pending

    async def get_pending(self, guild_id: int, pending_id: str) -> Optional[PendingGiveaway]:
        for draft in await self._load_pending(guild_id):
            if draft.id == pending_id:
                return draft
        return None

    async def update_pending(
        self, guild_id: int, pending_id: str, **changes: Any
    ) -> Optional[PendingGiveaway]:
        """Apply field changes to a draft. ``status="ready"`` pins it as ready."""
        status = changes.pop("status", None)
        if status is not None:
            changes["pinned_ready"] = PendingStatus(status) is PendingStatus.READY
        unknown = set(changes) - _PENDING_FIELDS
        if unknown:
            raise ValueError(f"Unknown draft field(s): {', '.join(sorted(unknown))}")

        drafts = await self._load_pending(guild_id)
        for draft in drafts:
            if draft.id == pending_id:
                for name, value in changes.items():
                    setattr(draft, name, value)
                await self._save_pending(guild_id, drafts)
                return draft
        return None

    async def delete_pending(self, guild_id: int, pending_id: str) -> bool:
        drafts = await self._load_pending(guild_id)
        remaining = [draft for draft in drafts if draft.id != pending_id]
        if len(remaining) == len(drafts):
            return False
        await self._save_pending(guild_id, remaining)
        return True

    async def list_pending(self, guild_id: int) -> list[PendingGiveaway]:
        drafts = await self._load_pending(guild_id)
        return sorted(drafts, key=lambda draft: draft.created_at, reverse=True)

    async def list_ready_pending(self, guild_id: int) -> list[PendingGiveaway]:
        return [
            draft
            for draft in await self.list_pending(guild_id)
            if draft.status is PendingStatus.READY
        ]

    # --- Per-user entry data ---------------------------------------------

    async def _load_user_data(self, guild_id: int) -> dict:
        return await self.storage.load(USER_DATA_FILE, guild_id, MODULE_NAMESPACE, {})

    async def get_trivia_attempts(self, giveaway_id: str, user_id: int, guild_id: int) -> int:
        data = await self._load_user_data(guild_id)
        entry = data.get(giveaway_id, {}).get(str(user_id), {})
        return int(entry.get("trivia_attempts_made", 0))

    async def increment_trivia_attempts(
        self, giveaway_id: str, user_id: int, guild_id: int
    ) -> int:
        data = await self._load_user_data(guild_id)
        entry = data.setdefault(giveaway_id, {}).setdefault(
            str(user_id), {"trivia_attempts_made": 0}
        )
        entry["trivia_attempts_made"] = int(entry.get("trivia_attempts_made", 0)) + 1
        await self.storage.save(USER_DATA_FILE, guild_id, MODULE_NAMESPACE, data)
        return entry["trivia_attempts_made"]

    async def clear_user_data(self, giveaway_id: str, guild_id: int) -> None:
        data = await self._load_user_data(guild_id)
        if data.pop(giveaway_id, None) is not None:
            await self.storage.save(USER_DATA_FILE, guild_id, MODULE_NAMESPACE, data)
