"""Terminal transitions for giveaways: ending, cancelling and force-finishing."""

from __future__ import annotations

import logging
import random
import secrets
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import discord

from .cache import GiveawayCache
from .gateway import NotSendable, Sendable
from .messages import (
    build_cancelled_embed,
    build_original_ended_embed,
    build_results_embed,
    results_content,
)
from .models import EntryMode, Giveaway
from .records import RecordStore

log = logging.getLogger(__name__)

T = TypeVar("T")

NotifyCallback = Callable[[str, int], Awaitable[None]]
ResultsViewFactory = Callable[[Giveaway], Optional[discord.ui.View]]


def fisher_yates(items: Sequence[T], rng: random.Random) -> List[T]:
    """Return a uniformly shuffled copy of ``items``."""
    shuffled = list(items)
    for index in range(len(shuffled) - 1, 0, -1):
        swap = rng.randrange(index + 1)
        shuffled[index], shuffled[swap] = shuffled[swap], shuffled[index]
    return shuffled


class EndingProcessor:
    """Moves a giveaway to its terminal state exactly once.

    ``process_end`` and ``cancel`` take the per-giveaway lock from the shared
    cache, so concurrent callers are serialised and every caller after the
    first finds the record already closed.
    """

    def __init__(
        self,
        store: RecordStore,
        cache: GiveawayCache,
        gateway,
        rng: Optional[random.Random] = None,
        notify: Optional[NotifyCallback] = None,
        results_view: Optional[ResultsViewFactory] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.gateway = gateway
        self.rng = rng or secrets.SystemRandom()
        self.notify = notify
        self.results_view = results_view

    async def process_end(self, giveaway_id: str, guild_id: int) -> Optional[Giveaway]:
        """End a giveaway and announce its winners.

        Returns the ended giveaway, or ``None`` when there was nothing to do
        (missing, already ended or cancelled).
        """
        async with self.cache.lock_for(giveaway_id):
            giveaway = await self.store.get(giveaway_id, guild_id)
            if giveaway is None:
                log.info("Giveaway %s no longer exists; nothing to end.", giveaway_id)
                self.cache.clear_timer(giveaway_id)
                return None
            if giveaway.is_finished:
                self.cache.clear_timer(giveaway_id)
                return None
            if giveaway.cancelled:
                self.cache.clear_timer(giveaway_id)
                self._release_observer(giveaway)
                if not giveaway.ended:
                    await self.store.update(giveaway_id, guild_id, ended=True)
                return None

            log.info("Processing end for giveaway %s", giveaway_id)
            self.cache.clear_timer(giveaway_id)
            self._release_observer(giveaway)
            await self._reconcile_reactions(giveaway)
            winners, assignments = await self._select_winners(giveaway)
            await self.store.update(
                giveaway_id,
                guild_id,
                ended=True,
                cancelled=False,
                winners=winners,
                prize_assignments=assignments,
            )

        await self._announce_results(giveaway)
        if winners:
            summary = (
                f"Giveaway **{giveaway.title}** (`{giveaway.id}`) finished with "
                f"{len(winners)} winner(s): {', '.join(f'<@{uid}>' for uid in winners)}."
            )
        else:
            summary = f"Giveaway **{giveaway.title}** (`{giveaway.id}`) finished with no winners."
        await self._notify(summary, guild_id)
        return giveaway

    async def cancel(self, giveaway_id: str, guild_id: int) -> bool:
        """Cancel a giveaway that is still running; returns False otherwise."""
        async with self.cache.lock_for(giveaway_id):
            giveaway = await self.store.get(giveaway_id, guild_id)
            if giveaway is None:
                log.warning("Cancel failed: giveaway %s not found", giveaway_id)
                return False
            self._release_observer(giveaway)
            if giveaway.cancelled:
                log.warning("Cancel failed: giveaway %s is already cancelled", giveaway_id)
                return False
            if giveaway.ended:
                log.warning("Cancel failed: giveaway %s has already ended", giveaway_id)
                return False
            updated = await self.store.update(
                giveaway_id, guild_id, cancelled=True, ended=True, winners=[]
            )
            if not updated:
                log.error("Failed to persist cancellation of giveaway %s", giveaway_id)
                return False
            self.cache.clear_timer(giveaway_id)

        await self._show_cancelled(giveaway)
        await self._notify(
            f"Giveaway **{giveaway.title}** (`{giveaway.id}`) was cancelled.", guild_id
        )
        log.info("Cancelled giveaway %s", giveaway_id)
        return True

    async def force_finish(self, giveaway_id: str, guild_id: int) -> Optional[Giveaway]:
        log.info("Force-finishing giveaway %s", giveaway_id)
        return await self.process_end(giveaway_id, guild_id)

    # --- Steps ------------------------------------------------------------

    def _release_observer(self, giveaway: Giveaway) -> None:
        if giveaway.message_id:
            self.gateway.unregister_reaction_observer(giveaway.message_id)

    async def _reconcile_reactions(self, giveaway: Giveaway) -> None:
        """Merge reactors missed while offline into the participant list."""
        if (
            giveaway.entry_mode is not EntryMode.REACTION
            or not giveaway.message_id
            or not giveaway.reaction_identifier
        ):
            return
        try:
            channel = await self._resolve_channel(giveaway)
            if channel is None:
                return
            message = await self.gateway.fetch_message(channel, giveaway.message_id)
            if message is None:
                log.warning(
                    "Announcement %s not found while reconciling giveaway %s",
                    giveaway.message_id,
                    giveaway.id,
                )
                return
            reactor_ids = await self.gateway.reaction_user_ids(
                message, giveaway.reaction_identifier
            )
        except Exception:
            log.exception("Failed to reconcile reactions for giveaway %s", giveaway.id)
            return

        known = set(giveaway.participants)
        missed = [user_id for user_id in dict.fromkeys(reactor_ids) if user_id not in known]
        if not missed:
            return
        await self.store.update(
            giveaway.id,
            giveaway.guild_id,
            participants=[*giveaway.participants, *missed],
        )
        log.info(
            "Reconciled %s missed participant(s) for giveaway %s (total: %s)",
            len(missed),
            giveaway.id,
            len(giveaway.participants),
        )

    async def _select_winners(self, giveaway: Giveaway) -> Tuple[List[int], Dict[int, str]]:
        winners: List[int] = []
        assignments: Dict[int, str] = {}

        if giveaway.entry_mode is EntryMode.COMPETITION:
            for user_id, placement in giveaway.sorted_placements()[: giveaway.winner_count]:
                if not await self._user_resolves(user_id, giveaway):
                    continue
                winners.append(user_id)
                if placement < len(giveaway.prizes) and giveaway.prizes[placement]:
                    assignments[user_id] = giveaway.prizes[placement]
            return winners, assignments

        if not giveaway.participants:
            return winners, assignments

        chosen = fisher_yates(giveaway.participants, self.rng)[: giveaway.winner_count]
        prizes = fisher_yates(giveaway.prizes, self.rng)
        for index, user_id in enumerate(chosen):
            if not await self._user_resolves(user_id, giveaway):
                continue
            winners.append(user_id)
            if index < len(prizes) and prizes[index]:
                assignments[user_id] = prizes[index]
        return winners, assignments

    async def _user_resolves(self, user_id: int, giveaway: Giveaway) -> bool:
        try:
            user = await self.gateway.fetch_user(user_id)
        except Exception:
            log.exception("Failed to fetch winner %s for giveaway %s", user_id, giveaway.id)
            return False
        if user is None:
            log.warning(
                "Winner %s of giveaway %s could not be fetched; skipping.", user_id, giveaway.id
            )
            return False
        return True

    async def _resolve_channel(self, giveaway: Giveaway) -> Optional[Sendable]:
        channel = await self.gateway.resolve_channel(giveaway.channel_id)
        if isinstance(channel, NotSendable):
            log.warning(
                "Channel %s for giveaway %s is not sendable: %s",
                giveaway.channel_id,
                giveaway.id,
                channel.reason,
            )
            return None
        return channel

    async def _announce_results(self, giveaway: Giveaway) -> None:
        try:
            channel = await self._resolve_channel(giveaway)
        except Exception:
            log.exception("Failed to resolve channel for giveaway %s", giveaway.id)
            return
        if channel is None:
            return

        try:
            original = await self.gateway.fetch_message(channel, giveaway.message_id)
        except Exception:
            log.exception("Failed to fetch announcement for giveaway %s", giveaway.id)
            original = None
        if original is None:
            log.warning(
                "Announcement %s for giveaway %s may have been deleted",
                giveaway.message_id,
                giveaway.id,
            )

        results_message = None
        try:
            view = None
            if giveaway.winners and self.results_view is not None:
                view = self.results_view(giveaway)
            results_message = await self.gateway.send(
                channel,
                content=results_content(giveaway, giveaway.winners),
                embed=build_results_embed(giveaway, giveaway.winners),
                view=view,
            )
        except Exception:
            log.exception("Failed to announce results for giveaway %s", giveaway.id)

        if original is None:
            return
        try:
            await self.gateway.edit(
                original,
                embed=build_original_ended_embed(
                    giveaway, getattr(results_message, "jump_url", None)
                ),
                view=None,
            )
        except Exception:
            log.exception("Failed to edit ended announcement for giveaway %s", giveaway.id)
        if giveaway.entry_mode is EntryMode.REACTION:
            try:
                await self.gateway.clear_reactions(original)
            except Exception as exc:
                log.warning("Could not remove reactions for giveaway %s: %s", giveaway.id, exc)

    async def _show_cancelled(self, giveaway: Giveaway) -> None:
        try:
            channel = await self._resolve_channel(giveaway)
            if channel is None:
                return
            original = await self.gateway.fetch_message(channel, giveaway.message_id)
            if original is None:
                log.warning("Original message not found for cancelled giveaway %s", giveaway.id)
                return
            await self.gateway.edit(original, embed=build_cancelled_embed(giveaway), view=None)
        except Exception:
            log.exception("Error updating message for cancelled giveaway %s", giveaway.id)
            return
        if giveaway.entry_mode is EntryMode.REACTION:
            try:
                await self.gateway.clear_reactions(original)
            except Exception as exc:
                log.warning("Could not remove reactions for giveaway %s: %s", giveaway.id, exc)

    async def _notify(self, message: str, guild_id: int) -> None:
        if self.notify is None:
            return
        try:
            await self.notify(message, guild_id)
        except Exception:
            log.exception("Failed to mirror giveaway event to the logger channel")
