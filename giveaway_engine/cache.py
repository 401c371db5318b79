"""Process-wide giveaway state shared by the record store and the scheduler."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from .models import Giveaway

log = logging.getLogger(__name__)


class GiveawayCache:
    """Owns the guild record cache, the armed-timer registry and the lock map.

    The record store and the scheduler receive the same instance so that
    removing a record can disarm its timer in the same call.
    """

    def __init__(self) -> None:
        self._giveaways: Dict[int, List[Giveaway]] = {}
        self._loaded: set[int] = set()
        self._timers: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._guild_locks: Dict[int, asyncio.Lock] = {}

    # --- Records ----------------------------------------------------------

    def get_giveaways(self, guild_id: int) -> List[Giveaway]:
        return self._giveaways.get(guild_id, [])

    def set_giveaways(self, guild_id: int, giveaways: List[Giveaway]) -> None:
        self._giveaways[guild_id] = giveaways
        self._loaded.add(guild_id)

    def is_loaded(self, guild_id: int) -> bool:
        return guild_id in self._loaded

    def invalidate(self, guild_id: int) -> None:
        self._loaded.discard(guild_id)
        self._giveaways.pop(guild_id, None)

    # --- Timers -----------------------------------------------------------

    def set_timer(self, giveaway_id: str, task: asyncio.Task) -> None:
        """Register ``task`` as the armed timer, disarming any previous one."""
        self.clear_timer(giveaway_id)
        self._timers[giveaway_id] = task

    def get_timer(self, giveaway_id: str) -> Optional[asyncio.Task]:
        return self._timers.get(giveaway_id)

    def has_timer(self, giveaway_id: str) -> bool:
        return giveaway_id in self._timers

    def release_timer(self, giveaway_id: str, task: asyncio.Task) -> None:
        """Drop ``task`` from the registry if it is still the registered timer."""
        if self._timers.get(giveaway_id) is task:
            del self._timers[giveaway_id]

    def clear_timer(self, giveaway_id: str) -> bool:
        """Cancel and forget the armed timer for ``giveaway_id``.

        The running task is never cancelled from inside itself.
        """
        task = self._timers.pop(giveaway_id, None)
        if task is None:
            return False
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
            log.debug("Disarmed timer for giveaway %s", giveaway_id)
        return True

    def clear_all_timers(self) -> int:
        timer_ids = list(self._timers)
        for giveaway_id in timer_ids:
            self.clear_timer(giveaway_id)
        return len(timer_ids)

    def timer_ids(self) -> List[str]:
        return list(self._timers)

    # --- Locks ------------------------------------------------------------

    def lock_for(self, giveaway_id: str) -> asyncio.Lock:
        """Return the mutual-exclusion lock guarding one giveaway's transitions."""
        lock = self._locks.get(giveaway_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[giveaway_id] = lock
        return lock

    def guild_lock(self, guild_id: int) -> asyncio.Lock:
        lock = self._guild_locks.get(guild_id)
        if lock is None:
            lock = asyncio.Lock()
            self._guild_locks[guild_id] = lock
        return lock

    def forget_lock(self, giveaway_id: str) -> None:
        lock = self._locks.get(giveaway_id)
        if lock is not None and not lock.locked():
            del self._locks[giveaway_id]
