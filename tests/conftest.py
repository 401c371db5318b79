from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Optional
from unittest.mock import MagicMock

import pytest

from giveaway_engine.cache import GiveawayCache
from giveaway_engine.config import Config, GiveawayDefaults, LoggingConfig, PermissionsConfig
from giveaway_engine.ending import EndingProcessor
from giveaway_engine.gateway import NotSendable, Sendable
from giveaway_engine.manager import GiveawayManager
from giveaway_engine.models import EntryMode, Giveaway
from giveaway_engine.records import RecordStore, generate_id
from giveaway_engine.scheduler import GiveawayScheduler
from giveaway_engine.storage import ModuleStorage

GUILD_ID = 1111
CHANNEL_ID = 2222
CREATOR_ID = 3333
ADMIN_ROLE_ID = 4444


class FakeMessage:
    def __init__(self, message_id: int, channel_id: int, content=None, embed=None, view=None):
        self.id = message_id
        self.channel_id = channel_id
        self.content = content
        self.embed = embed
        self.view = view
        self.jump_url = f"https://discord.com/channels/{GUILD_ID}/{channel_id}/{message_id}"
        self.edits: list[dict] = []
        self.reactions_added: list[str] = []
        self.reactions_cleared = False


class FakeGateway:
    """In-memory stand-in for DiscordGateway."""

    def __init__(self) -> None:
        self.channels: dict[int, SimpleNamespace] = {}
        self.messages: dict[int, FakeMessage] = {}
        self.sent: list[FakeMessage] = []
        self.reactors: dict[int, list[int]] = {}
        self.missing_users: set[int] = set()
        self.observers: dict[int, tuple] = {}
        self.views: list[tuple] = []
        self.send_error: Optional[Exception] = None
        self.edit_error: Optional[Exception] = None
        self._next_id = 50_000

    def add_channel(self, channel_id: int) -> None:
        self.channels[channel_id] = SimpleNamespace(id=channel_id)

    def post(self, channel_id: int = CHANNEL_ID) -> FakeMessage:
        """Create an existing message, as if posted earlier."""
        self._next_id += 1
        message = FakeMessage(self._next_id, channel_id)
        self.messages[message.id] = message
        return message

    async def resolve_channel(self, channel_id: int):
        channel = self.channels.get(channel_id)
        if channel is None:
            return NotSendable(channel_id, "Channel not found.")
        return Sendable(channel)

    async def fetch_message(self, channel, message_id: int):
        return self.messages.get(message_id)

    async def send(self, channel, *, content=None, embed=None, view=None):
        if self.send_error is not None:
            raise self.send_error
        self._next_id += 1
        message = FakeMessage(self._next_id, channel.id, content, embed, view)
        self.messages[message.id] = message
        self.sent.append(message)
        return message

    async def edit(self, message, **changes) -> None:
        if self.edit_error is not None:
            raise self.edit_error
        message.edits.append(changes)

    async def add_reaction(self, message, emoji: str) -> None:
        message.reactions_added.append(emoji)

    async def clear_reactions(self, message) -> None:
        message.reactions_cleared = True

    async def reaction_user_ids(self, message, identifier: str) -> list[int]:
        return list(self.reactors.get(message.id, []))

    async def fetch_user(self, user_id: int):
        if user_id in self.missing_users:
            return None
        return SimpleNamespace(id=user_id, bot=False)

    def add_view(self, view, message_id=None) -> None:
        self.views.append((view, message_id))

    def register_reaction_observer(self, message_id, identifier, callback, expires_at) -> None:
        self.observers[message_id] = (identifier, callback, expires_at)

    def unregister_reaction_observer(self, message_id: int) -> bool:
        return self.observers.pop(message_id, None) is not None


@pytest.fixture
def storage(tmp_path) -> ModuleStorage:
    return ModuleStorage(tmp_path)


@pytest.fixture
def cache() -> GiveawayCache:
    return GiveawayCache()


@pytest.fixture
def store(storage, cache) -> RecordStore:
    return RecordStore(storage, cache)


@pytest.fixture
def gateway() -> FakeGateway:
    fake = FakeGateway()
    fake.add_channel(CHANNEL_ID)
    return fake


@pytest.fixture
def ending(store, cache, gateway) -> EndingProcessor:
    return EndingProcessor(store, cache, gateway, rng=random.Random(1234))


@pytest.fixture
def scheduler(store, cache, storage, ending, gateway) -> GiveawayScheduler:
    return GiveawayScheduler(store, cache, storage, ending, gateway)


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        token="token",
        application_id=1,
        data_dir=tmp_path,
        logging=LoggingConfig(),
        giveaway_defaults=GiveawayDefaults(),
        permissions=PermissionsConfig(admin_roles=[ADMIN_ROLE_ID]),
    )


@pytest.fixture
def manager(config, storage, gateway) -> GiveawayManager:
    return GiveawayManager(
        MagicMock(), config, storage, gateway=gateway, rng=random.Random(99)
    )


@pytest.fixture
def make_giveaway(gateway):
    """Build a live giveaway whose announcement exists in the fake gateway."""

    def _make(**overrides) -> Giveaway:
        now = datetime.now(tz=UTC)
        values = dict(
            id=generate_id(),
            guild_id=GUILD_ID,
            channel_id=CHANNEL_ID,
            message_id=gateway.post().id,
            title="Launch Party",
            prizes=["A"],
            start_time=now - timedelta(minutes=5),
            end_time=now + timedelta(hours=1),
            creator_id=CREATOR_ID,
            entry_mode=EntryMode.BUTTON,
        )
        values.update(overrides)
        return Giveaway(**values)

    return _make
