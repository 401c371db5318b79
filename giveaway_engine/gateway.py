"""Thin adapter over the Discord client used by the giveaway engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import discord

log = logging.getLogger(__name__)

ReactionCallback = Callable[[int], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Sendable:
    """A channel that messages can be posted to."""
    channel: discord.abc.Messageable

    @property
    def id(self) -> int:
        return self.channel.id


@dataclass(frozen=True, slots=True)
class NotSendable:
    channel_id: int
    reason: str


ChannelRef = Union[Sendable, NotSendable]


@dataclass(slots=True)
class ReactionObserver:
    identifier: str
    callback: ReactionCallback
    expires_at: datetime


def emoji_key(emoji: Any) -> str:
    """Return the identifier used to match a reaction emoji.

    Custom emoji are matched by id, unicode emoji by their text.
    """
    if isinstance(emoji, str):
        return emoji
    emoji_id = getattr(emoji, "id", None)
    if emoji_id:
        return str(emoji_id)
    return str(getattr(emoji, "name", emoji))


class DiscordGateway:
    """Channel, message, reaction and user operations against Discord.

    Fetch helpers swallow ``discord.NotFound``/``Forbidden``/``HTTPException``
    and return ``None``; send and edit calls propagate so callers can decide
    whether a failure is fatal.
    """

    def __init__(self, client: discord.Client) -> None:
        self.client = client
        self._reaction_observers: Dict[int, ReactionObserver] = {}

    async def resolve_channel(self, channel_id: int) -> ChannelRef:
        channel = self.client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(channel_id)
            except discord.NotFound:
                return NotSendable(channel_id, "Channel not found.")
            except discord.Forbidden:
                return NotSendable(channel_id, "Missing access to the channel.")
            except discord.HTTPException as exc:
                log.warning("Failed to fetch channel %s: %s", channel_id, exc)
                return NotSendable(channel_id, "Channel could not be fetched.")
        if not isinstance(channel, discord.abc.Messageable):
            return NotSendable(channel_id, "Channel cannot receive messages.")
        return Sendable(channel)

    async def fetch_message(
        self, channel: Sendable, message_id: int
    ) -> Optional[discord.Message]:
        if not message_id:
            return None
        try:
            return await channel.channel.fetch_message(message_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None

    async def send(
        self,
        channel: Sendable,
        *,
        content: Optional[str] = None,
        embed: Optional[discord.Embed] = None,
        view: Optional[discord.ui.View] = None,
    ) -> discord.Message:
        kwargs: Dict[str, Any] = {}
        if content is not None:
            kwargs["content"] = content
        if embed is not None:
            kwargs["embed"] = embed
        if view is not None:
            kwargs["view"] = view
        return await channel.channel.send(**kwargs)

    async def edit(self, message: discord.Message, **changes: Any) -> None:
        await message.edit(**changes)

    async def add_reaction(self, message: discord.Message, emoji: str) -> None:
        await message.add_reaction(emoji)

    async def clear_reactions(self, message: discord.Message) -> None:
        await message.clear_reactions()

    async def reaction_user_ids(
        self, message: discord.Message, identifier: str
    ) -> list[int]:
        """Return the ids of non-bot users who reacted with ``identifier``."""
        for reaction in message.reactions:
            if emoji_key(reaction.emoji) != identifier:
                continue
            user_ids = []
            async for user in reaction.users():
                if not user.bot:
                    user_ids.append(user.id)
            return user_ids
        return []

    async def fetch_user(self, user_id: int) -> Optional[discord.User]:
        user = self.client.get_user(user_id)
        if user is not None:
            return user
        try:
            return await self.client.fetch_user(user_id)
        except (discord.NotFound, discord.HTTPException):
            return None

    def add_view(self, view: discord.ui.View, message_id: Optional[int] = None) -> None:
        self.client.add_view(view, message_id=message_id)

    # --- Reaction observers ----------------------------------------------

    def register_reaction_observer(
        self,
        message_id: int,
        identifier: str,
        callback: ReactionCallback,
        expires_at: datetime,
    ) -> None:
        self._reaction_observers[message_id] = ReactionObserver(
            identifier, callback, expires_at
        )
        log.debug("Watching reactions on message %s until %s", message_id, expires_at)

    def unregister_reaction_observer(self, message_id: int) -> bool:
        return self._reaction_observers.pop(message_id, None) is not None

    def has_reaction_observer(self, message_id: int) -> bool:
        return message_id in self._reaction_observers

    async def dispatch_reaction(self, payload: discord.RawReactionActionEvent) -> bool:
        """Forward a raw reaction-add event to the observer for its message."""
        observer = self._reaction_observers.get(payload.message_id)
        if observer is None:
            return False
        if observer.expires_at <= datetime.now(tz=UTC):
            self.unregister_reaction_observer(payload.message_id)
            return False
        member = getattr(payload, "member", None)
        if member is not None and member.bot:
            return False
        own_user = self.client.user
        if own_user is not None and payload.user_id == own_user.id:
            return False
        if emoji_key(payload.emoji) != observer.identifier:
            return False
        await observer.callback(payload.user_id)
        return True
