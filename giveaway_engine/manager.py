from __future__ import annotations

import asyncio
import functools
import logging
import random
from datetime import UTC, datetime, timedelta
from typing import Any, Iterable, List, Optional, Tuple, Union

import discord

from .cache import GiveawayCache
from .config import Config
from .ending import EndingProcessor
from .gateway import DiscordGateway, NotSendable
from .messages import build_announcement_embed
from .models import EntryMode, Giveaway, PendingGiveaway, normalize_attempts
from .records import RecordStore, generate_id
from .scheduler import GiveawayScheduler, RecoveryReport
from .storage import ModuleStorage
from .validation import (
    EntryRejection,
    missing_fields,
    placement_text,
    validate_entry,
)
from .views import ClaimView, GiveawayView

log = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Giveaway not found. It may have been deleted."


class GiveawayError(RuntimeError):
    """Raised with a user-facing message when a giveaway operation fails."""


def answers_match(given: str, expected: str) -> bool:
    return given.strip().lower() == expected.strip().lower()


def parse_reaction_emoji(value: str) -> Tuple[str, str]:
    """Return ``(identifier, display)`` for a unicode or custom emoji string."""
    emoji = discord.PartialEmoji.from_str(value.strip())
    if emoji.id:
        return str(emoji.id), str(emoji)
    if not emoji.name:
        raise GiveawayError("Please provide a valid emoji.")
    return emoji.name, emoji.name


class GiveawayManager:
    """Coordinates giveaway lifecycle, persistence, and Discord interactions."""

    def __init__(
        self,
        bot: discord.Client,
        config: Config,
        storage: ModuleStorage,
        *,
        gateway=None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.bot = bot
        self.config = config
        self.storage = storage
        self.cache = GiveawayCache()
        self.store = RecordStore(storage, self.cache)
        self.gateway = gateway or DiscordGateway(bot)
        self.ending = EndingProcessor(
            self.store,
            self.cache,
            self.gateway,
            rng=rng,
            notify=self._notify_logger,
            results_view=self._build_claim_view,
        )
        self.scheduler = GiveawayScheduler(
            self.store, self.cache, storage, self.ending, self.gateway
        )
        self._recovered = False

    # --- Permissions ------------------------------------------------------

    def is_admin(
        self,
        member: discord.Member,
        *,
        guild_owner_id: Optional[int] = None,
        base_permissions: Optional[discord.Permissions] = None,
        role_ids: Optional[Iterable[int]] = None,
    ) -> bool:
        owner_id = guild_owner_id
        if owner_id is None:
            guild = getattr(member, "guild", None)
            if guild is not None:
                owner_id = getattr(guild, "owner_id", None)
        if owner_id is not None and owner_id == member.id:
            log.debug("Member %s is guild owner; treating as giveaway admin.", member.id)
            return True

        permissions_obj = base_permissions
        if permissions_obj is None:
            permissions_obj = getattr(member, "guild_permissions", None)
        if permissions_obj and (
            permissions_obj.administrator or permissions_obj.manage_guild
        ):
            log.debug(
                "Member %s has administrative permissions; treating as giveaway admin.",
                member.id,
            )
            return True

        effective_role_ids: set[int] = set()
        if role_ids is not None:
            for role_id in role_ids:
                try:
                    effective_role_ids.add(int(role_id))
                except (TypeError, ValueError):
                    continue
        if not effective_role_ids:
            effective_role_ids.update(role.id for role in getattr(member, "roles", []))

        admin_roles = {int(role_id) for role_id in self.config.permissions.admin_roles}
        if not admin_roles:
            log.debug("No giveaway admin roles configured; denying member %s.", member.id)
            return False

        matching_roles = sorted(admin_roles.intersection(effective_role_ids))
        if matching_roles:
            log.debug(
                "Member %s matched giveaway admin role(s) %s.", member.id, matching_roles
            )
            return True

        log.debug(
            "Member %s lacks required giveaway admin roles %s (has %s).",
            member.id,
            sorted(admin_roles),
            sorted(effective_role_ids),
        )
        return False

    # --- Drafts -----------------------------------------------------------

    async def create_pending(
        self, guild_id: int, user_id: int, **changes: Any
    ) -> PendingGiveaway:
        pending = await self.store.create_pending(
            guild_id, user_id, duration_ms=self.config.giveaway_defaults.duration_ms
        )
        if changes:
            pending = await self.update_pending(guild_id, pending.id, **changes)
        return pending

    async def update_pending(
        self, guild_id: int, pending_id: str, **changes: Any
    ) -> PendingGiveaway:
        defaults = self.config.giveaway_defaults
        if "title" in changes:
            title = str(changes["title"] or "").strip()
            if not title:
                raise GiveawayError("The title must not be empty.")
            changes["title"] = title[:256]
        if "winner_count" in changes:
            winner_count = int(changes["winner_count"])
            if winner_count < 1 or winner_count > defaults.max_winners:
                raise GiveawayError(
                    f"The number of winners must be between 1 and {defaults.max_winners}."
                )
            changes["winner_count"] = winner_count
        if "duration_ms" in changes:
            duration_ms = int(changes["duration_ms"])
            if duration_ms <= 0 or duration_ms > defaults.max_duration_ms:
                raise GiveawayError(
                    f"The duration must be positive and at most {defaults.max_duration_days} days."
                )
        if "entry_mode" in changes:
            changes["entry_mode"] = EntryMode(changes["entry_mode"])
        if "max_trivia_attempts" in changes:
            changes["max_trivia_attempts"] = normalize_attempts(changes["max_trivia_attempts"])

        pending = await self.store.update_pending(guild_id, pending_id, **changes)
        if pending is None:
            raise GiveawayError(NOT_FOUND_MESSAGE)
        return pending

    async def set_prize(
        self, guild_id: int, pending_id: str, slot: int, text: str
    ) -> PendingGiveaway:
        """Set the prize for a zero-based winner slot."""
        pending = await self.store.get_pending(guild_id, pending_id)
        if pending is None:
            raise GiveawayError(NOT_FOUND_MESSAGE)
        if slot < 0 or slot >= pending.winner_count:
            raise GiveawayError(
                f"Prize slot must be between 1 and {pending.winner_count}."
            )
        prizes = list(pending.prizes)
        while len(prizes) <= slot:
            prizes.append("")
        prizes[slot] = text.strip()
        return await self.update_pending(guild_id, pending_id, prizes=prizes)

    async def discard_pending(self, guild_id: int, pending_id: str) -> bool:
        async with self._draft_lock(pending_id):
            removed = await self.store.delete_pending(guild_id, pending_id)
        if removed:
            log.info("Discarded draft giveaway %s in guild %s", pending_id, guild_id)
        return removed

    async def list_pending(self, guild_id: int) -> List[PendingGiveaway]:
        return await self.store.list_pending(guild_id)

    def _draft_lock(self, pending_id: str) -> asyncio.Lock:
        return self.cache.lock_for(f"draft:{pending_id}")

    async def start_pending(
        self,
        guild_id: int,
        pending_id: str,
        channel_id: int,
        *,
        creator_name: Optional[str] = None,
    ) -> Giveaway:
        """Announce a ready draft and turn it into a live giveaway."""
        async with self._draft_lock(pending_id):
            pending = await self.store.get_pending(guild_id, pending_id)
            problem = missing_fields(pending)
            if problem:
                raise GiveawayError(problem)

            channel = await self.gateway.resolve_channel(channel_id)
            if isinstance(channel, NotSendable):
                raise GiveawayError(f"I can't post in that channel: {channel.reason}")

            now = datetime.now(tz=UTC)
            giveaway = Giveaway(
                id=generate_id(),
                guild_id=guild_id,
                channel_id=channel_id,
                message_id=0,
                title=pending.title,
                prizes=list(pending.prizes),
                start_time=now,
                end_time=now + timedelta(milliseconds=pending.duration_ms),
                creator_id=pending.created_by,
                entry_mode=pending.entry_mode,
                winner_count=pending.winner_count,
                trivia_question=pending.trivia_question,
                trivia_answer=pending.trivia_answer,
                max_trivia_attempts=pending.max_trivia_attempts,
                reaction_identifier=pending.reaction_identifier,
                reaction_display_emoji=pending.reaction_display_emoji,
                required_roles=list(pending.required_roles),
                blocked_roles=list(pending.blocked_roles),
                live_leaderboard=pending.live_leaderboard,
            )
            try:
                message = await self.gateway.send(
                    channel,
                    embed=build_announcement_embed(giveaway, creator_name=creator_name),
                    view=self._build_view(giveaway),
                )
            except discord.HTTPException as exc:
                log.exception("Failed to send announcement for draft %s", pending_id)
                raise GiveawayError("Failed to send the giveaway announcement.") from exc
            giveaway.message_id = message.id

            if await self.store.add(giveaway, guild_id) is None:
                raise GiveawayError("A giveaway with this ID already exists.")
            if not await self.store.delete_pending(guild_id, pending_id):
                log.warning(
                    "Draft %s vanished while giveaway %s was starting", pending_id, giveaway.id
                )

        if giveaway.entry_mode is EntryMode.REACTION:
            self._observe_reactions(giveaway)
            try:
                await self.gateway.add_reaction(message, giveaway.reaction_display_emoji)
            except Exception as exc:
                log.warning("Could not add entry reaction for giveaway %s: %s", giveaway.id, exc)

        await self.scheduler.schedule_end(giveaway)
        await self._notify_logger(
            f"Giveaway **{giveaway.title}** (`{giveaway.id}`) started in <#{channel_id}>.",
            guild_id,
        )
        return giveaway

    # --- Live entries -----------------------------------------------------

    async def enter_button(
        self, guild_id: int, giveaway_id: str, user_id: int, role_ids: Iterable[int]
    ) -> str:
        result = await validate_entry(
            self.store, giveaway_id, guild_id, user_id, role_ids, EntryMode.BUTTON
        )
        if isinstance(result, EntryRejection):
            return result.message
        if not await self.store.add_participant(giveaway_id, user_id, guild_id):
            return "Could not enter the giveaway at this time."
        return "You have successfully entered the giveaway! 🎉"

    async def check_answer_entry(
        self,
        guild_id: int,
        giveaway_id: str,
        user_id: int,
        role_ids: Iterable[int],
        mode: EntryMode,
    ) -> Union[Giveaway, EntryRejection]:
        """Validate before showing an answer form, attempt limit included."""
        return await validate_entry(
            self.store,
            giveaway_id,
            guild_id,
            user_id,
            role_ids,
            mode,
            check_attempts=True,
        )

    async def submit_trivia_answer(
        self,
        guild_id: int,
        giveaway_id: str,
        user_id: int,
        role_ids: Iterable[int],
        answer: str,
    ) -> str:
        result = await self.check_answer_entry(
            guild_id, giveaway_id, user_id, role_ids, EntryMode.TRIVIA
        )
        if isinstance(result, EntryRejection):
            return result.message
        if not result.trivia_answer:
            return "The answer is not set. Please contact an admin."
        if not answers_match(answer, result.trivia_answer):
            return await self._wrong_answer(result, user_id)
        if not await self.store.add_participant(giveaway_id, user_id, guild_id):
            return "Could not enter the giveaway at this time."
        return "Correct! You've entered the giveaway. 🎉"

    async def submit_competition_answer(
        self,
        guild_id: int,
        giveaway_id: str,
        user_id: int,
        role_ids: Iterable[int],
        answer: str,
    ) -> str:
        role_ids = list(role_ids)
        result = await self.check_answer_entry(
            guild_id, giveaway_id, user_id, role_ids, EntryMode.COMPETITION
        )
        if isinstance(result, EntryRejection):
            return result.message
        if not result.trivia_answer:
            return "The answer is not set. Please contact an admin."
        if not answers_match(answer, result.trivia_answer):
            return await self._wrong_answer(result, user_id)

        async with self.cache.lock_for(giveaway_id):
            # Placements may have filled up while the answer was checked.
            result = await self.check_answer_entry(
                guild_id, giveaway_id, user_id, role_ids, EntryMode.COMPETITION
            )
            if isinstance(result, EntryRejection):
                return result.message
            giveaway = result
            placement = len(giveaway.competition_placements)
            placements = {**giveaway.competition_placements, user_id: placement}
            changes: dict = {"competition_placements": placements}
            if user_id not in giveaway.participants:
                changes["participants"] = [*giveaway.participants, user_id]
            await self.store.update(giveaway_id, guild_id, **changes)
            all_placed = len(placements) >= giveaway.winner_count

        reply = f"**Congratulations!** You placed **{placement_text(placement)}** in the competition!"
        if placement < len(giveaway.prizes) and giveaway.prizes[placement]:
            reply += "\n\nYour prize will be revealed when the competition ends."

        if all_placed:
            log.info(
                "Competition %s has all %s winners; ending it.",
                giveaway_id,
                giveaway.winner_count,
            )
            await self.ending.process_end(giveaway_id, guild_id)
        elif giveaway.live_leaderboard:
            await self._refresh_announcement(giveaway)
        return reply

    async def _wrong_answer(self, giveaway: Giveaway, user_id: int) -> str:
        attempts = await self.store.increment_trivia_attempts(
            giveaway.id, user_id, giveaway.guild_id
        )
        reply = "Sorry, that's not the right answer. "
        if giveaway.max_trivia_attempts > 0:
            attempts_left = giveaway.max_trivia_attempts - attempts
            if attempts_left > 0:
                reply += f"You have **{attempts_left}** attempt(s) left."
            else:
                reply += "You have no more attempts left."
        else:
            reply += "Try again!"
        return reply

    async def handle_reaction(self, guild_id: int, giveaway_id: str, user_id: int) -> bool:
        """Record a reaction-mode entry observed live on the announcement."""
        added = await self.store.add_participant(giveaway_id, user_id, guild_id)
        if added:
            log.debug("User %s entered giveaway %s by reaction", user_id, giveaway_id)
        return added

    async def claim_prize(
        self, guild_id: int, giveaway_id: str, user_id: int, *, is_admin: bool = False
    ) -> str:
        giveaway = await self.store.get(giveaway_id, guild_id)
        if giveaway is None:
            return "This giveaway could not be found."
        if not giveaway.ended:
            return (
                "This giveaway has not ended yet. Winners will be announced once it concludes."
            )
        if giveaway.cancelled:
            return "This giveaway was cancelled, so no prizes can be claimed."

        if user_id in giveaway.winners:
            already_claimed = user_id in giveaway.claimed_prizes
            prize = giveaway.prize_assignments.get(user_id) or "Prize not available"
            if not already_claimed:
                await self.store.update(
                    giveaway_id,
                    guild_id,
                    claimed_prizes=[*giveaway.claimed_prizes, user_id],
                )
            claim_status = " (previously claimed)" if already_claimed else ""
            return f"🎁 Congratulations! Your prize is: ||{prize}||{claim_status}"

        if is_admin or user_id == giveaway.creator_id:
            prize_info = (
                f"||{', '.join(giveaway.prizes)}||" if giveaway.prizes else "No prizes set"
            )
            winners_text = (
                ", ".join(f"<@{winner}>" for winner in giveaway.winners)
                if giveaway.winners
                else "None"
            )
            return (
                "You didn't win this one. As an admin/creator, you can see the prize "
                f"details: {prize_info}. Winners: {winners_text}."
            )
        return "Nice try! But you are not a winner of this giveaway... Maybe next time!"

    # --- Administration ---------------------------------------------------

    async def get_giveaway(self, guild_id: int, giveaway_id: str) -> Optional[Giveaway]:
        return await self.store.get(giveaway_id, guild_id)

    async def list_giveaways(
        self, guild_id: int, *, active_only: bool = False
    ) -> List[Giveaway]:
        return await self.store.list_all(guild_id, active_only=active_only)

    async def cancel(self, guild_id: int, giveaway_id: str) -> bool:
        return await self.ending.cancel(giveaway_id, guild_id)

    async def force_finish(self, guild_id: int, giveaway_id: str) -> Optional[Giveaway]:
        return await self.ending.force_finish(giveaway_id, guild_id)

    async def remove(self, guild_id: int, giveaway_id: str) -> bool:
        giveaway = await self.store.get(giveaway_id, guild_id)
        if giveaway is None:
            return False
        if giveaway.message_id:
            self.gateway.unregister_reaction_observer(giveaway.message_id)
        removed = await self.store.remove(giveaway_id, guild_id)
        if removed:
            await self._notify_logger(
                f"Giveaway **{giveaway.title}** (`{giveaway.id}`) was removed.", guild_id
            )
        return removed

    # --- Startup ----------------------------------------------------------

    async def recover(self) -> Optional[RecoveryReport]:
        """Re-arm timers and re-attach views after a restart. Runs once."""
        if self._recovered:
            return None
        self._recovered = True
        report = await self.scheduler.schedule_existing()
        for guild_id in await self.storage.list_guilds_with_data():
            for giveaway in await self.store.list_all(guild_id):
                if not giveaway.message_id:
                    continue
                if giveaway.is_open():
                    self._register_view(giveaway)
                    if giveaway.entry_mode is EntryMode.REACTION:
                        self._observe_reactions(giveaway)
                elif giveaway.is_finished and giveaway.winners:
                    # The claim button sits on the results message, whose id
                    # is not stored; register it globally by custom_id.
                    self.gateway.add_view(self._build_claim_view(giveaway), None)
        return report

    # --- Helpers ----------------------------------------------------------

    def _build_view(self, giveaway: Giveaway) -> Optional[GiveawayView]:
        if giveaway.entry_mode is EntryMode.REACTION:
            return None
        return GiveawayView(self, giveaway.id, giveaway.entry_mode)

    def _build_claim_view(self, giveaway: Giveaway) -> ClaimView:
        return ClaimView(self, giveaway.id)

    def _register_view(self, giveaway: Giveaway) -> None:
        view = self._build_view(giveaway)
        if view is not None:
            self.gateway.add_view(view, giveaway.message_id)

    def _observe_reactions(self, giveaway: Giveaway) -> None:
        if not giveaway.reaction_identifier:
            return
        self.gateway.register_reaction_observer(
            giveaway.message_id,
            giveaway.reaction_identifier,
            functools.partial(self.handle_reaction, giveaway.guild_id, giveaway.id),
            giveaway.end_time,
        )

    async def _refresh_announcement(self, giveaway: Giveaway) -> None:
        try:
            channel = await self.gateway.resolve_channel(giveaway.channel_id)
            if isinstance(channel, NotSendable):
                return
            message = await self.gateway.fetch_message(channel, giveaway.message_id)
            if message is None:
                return
            await self.gateway.edit(message, embed=build_announcement_embed(giveaway))
        except Exception:
            log.exception("Failed to update leaderboard for giveaway %s", giveaway.id)

    async def _notify_logger(self, message: str, guild_id: Optional[int] = None) -> None:
        channel_id = self.config.logging.logger_channel_id
        if not channel_id:
            return
        channel = await self.gateway.resolve_channel(channel_id)
        if isinstance(channel, NotSendable):
            log.warning("Logger channel %s unavailable: %s", channel_id, channel.reason)
            return
        try:
            await self.gateway.send(channel, content=f"[Giveaway] {message}")
        except discord.HTTPException as exc:
            log.warning("Failed to send log message to %s: %s", channel_id, exc)
