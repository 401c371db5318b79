"""One end timer per live giveaway, plus recovery after a restart."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Callable, List, Optional

from .cache import GiveawayCache
from .ending import EndingProcessor
from .models import Giveaway
from .records import RecordStore
from .storage import ModuleStorage

log = logging.getLogger(__name__)

# Largest delay a signed 32-bit millisecond timer can hold (about 24.8 days).
MAX_TIMER_DELAY = timedelta(milliseconds=2**31 - 1)


@dataclass(slots=True)
class RecoveryReport:
    scheduled: List[str] = field(default_factory=list)
    processed: List[str] = field(default_factory=list)


class GiveawayScheduler:
    """Arms, re-arms and disarms giveaway end timers.

    Each timer is an ``asyncio.Task`` registered in the shared cache. Waits
    longer than ``max_delay`` are split into a chain of ``max_delay`` sleeps;
    every link re-reads the record before deciding whether to sleep again or
    end the giveaway, so a giveaway is never ended before its ``end_time``.
    """

    def __init__(
        self,
        store: RecordStore,
        cache: GiveawayCache,
        storage: ModuleStorage,
        ending: EndingProcessor,
        gateway,
        *,
        max_delay: timedelta = MAX_TIMER_DELAY,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.storage = storage
        self.ending = ending
        self.gateway = gateway
        self.max_delay = max_delay
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    async def schedule_end(self, giveaway: Giveaway) -> None:
        if giveaway.ended or giveaway.cancelled:
            if giveaway.message_id:
                self.gateway.unregister_reaction_observer(giveaway.message_id)
            return

        remaining = giveaway.end_time - self._clock()
        if remaining <= timedelta(0):
            log.info("Giveaway %s is overdue; ending it now.", giveaway.id)
            await self.ending.process_end(giveaway.id, giveaway.guild_id)
            return

        delay = min(remaining, self.max_delay)
        task = asyncio.create_task(
            self._wait(giveaway.id, giveaway.guild_id, delay),
            name=f"giveaway-end:{giveaway.id}",
        )
        self.cache.set_timer(giveaway.id, task)
        if delay < remaining:
            log.debug(
                "Armed ceiling timer for giveaway %s (%s of %s remaining)",
                giveaway.id,
                delay,
                remaining,
            )
        else:
            log.debug("Armed end timer for giveaway %s in %s", giveaway.id, delay)

    async def _wait(self, giveaway_id: str, guild_id: int, delay: timedelta) -> None:
        try:
            await asyncio.sleep(delay.total_seconds())
        except asyncio.CancelledError:
            log.debug("End timer for giveaway %s cancelled", giveaway_id)
            raise

        # Fired: from here on a disarm must not interrupt the ending.
        self.cache.release_timer(giveaway_id, asyncio.current_task())
        try:
            giveaway = await self.store.get(giveaway_id, guild_id)
            if giveaway is None:
                log.info("Timer fired for removed giveaway %s", giveaway_id)
                return
            await self.schedule_end(giveaway)
        except Exception:
            log.exception("End timer for giveaway %s failed", giveaway_id)

    async def schedule_existing(self) -> RecoveryReport:
        """Arm or run every open giveaway found in storage.

        Must run once after the client is connected, before entries are
        accepted.
        """
        report = RecoveryReport()
        for guild_id in await self.storage.list_guilds_with_data():
            try:
                active = await self.store.load_active_uncached(guild_id)
            except Exception:
                log.exception("Failed to load giveaways for guild %s", guild_id)
                continue
            for giveaway in active:
                try:
                    if giveaway.end_time <= self._clock():
                        await self.ending.process_end(giveaway.id, guild_id)
                        report.processed.append(giveaway.id)
                    else:
                        await self.schedule_end(giveaway)
                        report.scheduled.append(giveaway.id)
                except Exception:
                    log.exception("Failed to recover giveaway %s", giveaway.id)
        log.info(
            "Recovered giveaways: %s scheduled, %s ended while offline.",
            len(report.scheduled),
            len(report.processed),
        )
        return report

    def disarm(self, giveaway_id: str) -> bool:
        return self.cache.clear_timer(giveaway_id)

    def is_armed(self, giveaway_id: str) -> bool:
        return self.cache.has_timer(giveaway_id)

    def shutdown(self) -> int:
        cancelled = self.cache.clear_all_timers()
        if cancelled:
            log.info("Cancelled %s pending giveaway timer(s).", cancelled)
        return cancelled
