from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from giveaway_engine.gateway import DiscordGateway, NotSendable, Sendable, emoji_key


def _not_found():
    return discord.NotFound(MagicMock(status=404, reason="Not Found"), "missing")


def _forbidden():
    return discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "no access")


@pytest.fixture
def client():
    client = MagicMock()
    client.user = SimpleNamespace(id=1)
    client.get_channel.return_value = None
    client.get_user.return_value = None
    client.fetch_channel = AsyncMock()
    client.fetch_user = AsyncMock()
    return client


def _payload(message_id=100, user_id=42, emoji="🎉", member=None):
    if isinstance(emoji, str):
        emoji = SimpleNamespace(id=None, name=emoji)
    return SimpleNamespace(message_id=message_id, user_id=user_id, emoji=emoji, member=member)


class TestEmojiKey:
    def test_unicode_and_custom(self):
        assert emoji_key("🎉") == "🎉"
        assert emoji_key(SimpleNamespace(id=None, name="🎉")) == "🎉"
        assert emoji_key(SimpleNamespace(id=1234, name="party")) == "1234"


class TestResolveChannel:
    @pytest.mark.asyncio
    async def test_cached_text_channel_is_sendable(self, client):
        channel = MagicMock(spec=discord.TextChannel)
        channel.id = 5
        client.get_channel.return_value = channel

        resolved = await DiscordGateway(client).resolve_channel(5)

        assert isinstance(resolved, Sendable)
        assert resolved.id == 5
        client.fetch_channel.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "reason"),
        [
            (_not_found, "Channel not found."),
            (_forbidden, "Missing access to the channel."),
        ],
    )
    async def test_fetch_errors_become_not_sendable(self, client, error, reason):
        client.fetch_channel.side_effect = error()

        resolved = await DiscordGateway(client).resolve_channel(5)

        assert resolved == NotSendable(5, reason)

    @pytest.mark.asyncio
    async def test_category_cannot_receive_messages(self, client):
        client.get_channel.return_value = MagicMock(spec=discord.CategoryChannel)

        resolved = await DiscordGateway(client).resolve_channel(5)

        assert resolved == NotSendable(5, "Channel cannot receive messages.")


class TestMessages:
    @pytest.mark.asyncio
    async def test_send_passes_only_given_parts(self, client):
        channel = MagicMock()
        channel.send = AsyncMock(return_value="sent")

        result = await DiscordGateway(client).send(Sendable(channel), content="hi")

        assert result == "sent"
        channel.send.assert_awaited_once_with(content="hi")

    @pytest.mark.asyncio
    async def test_fetch_message_swallows_errors(self, client):
        channel = MagicMock()
        channel.fetch_message = AsyncMock(side_effect=_not_found())
        gateway = DiscordGateway(client)

        assert await gateway.fetch_message(Sendable(channel), 77) is None
        assert await gateway.fetch_message(Sendable(channel), 0) is None
        channel.fetch_message.assert_awaited_once_with(77)

    @pytest.mark.asyncio
    async def test_reaction_user_ids_skips_bots(self, client):
        async def users():
            for user in (
                SimpleNamespace(id=1, bot=True),
                SimpleNamespace(id=2, bot=False),
                SimpleNamespace(id=3, bot=False),
            ):
                yield user

        other = SimpleNamespace(emoji="👍", users=users)
        party = SimpleNamespace(emoji="🎉", users=users)
        message = SimpleNamespace(reactions=[other, party])
        gateway = DiscordGateway(client)

        assert await gateway.reaction_user_ids(message, "🎉") == [2, 3]
        assert await gateway.reaction_user_ids(message, "🔥") == []

    @pytest.mark.asyncio
    async def test_fetch_user_falls_back_and_tolerates_unknown(self, client):
        client.fetch_user.side_effect = _not_found()

        assert await DiscordGateway(client).fetch_user(9) is None
        client.fetch_user.assert_awaited_once_with(9)


class TestReactionObservers:
    @pytest.mark.asyncio
    async def test_matching_reaction_invokes_callback(self, client):
        callback = AsyncMock()
        gateway = DiscordGateway(client)
        gateway.register_reaction_observer(
            100, "🎉", callback, datetime.now(tz=UTC) + timedelta(hours=1)
        )

        assert await gateway.dispatch_reaction(_payload())
        callback.assert_awaited_once_with(42)

    @pytest.mark.asyncio
    async def test_ignored_reactions(self, client):
        callback = AsyncMock()
        gateway = DiscordGateway(client)
        gateway.register_reaction_observer(
            100, "🎉", callback, datetime.now(tz=UTC) + timedelta(hours=1)
        )

        assert not await gateway.dispatch_reaction(_payload(emoji="👍"))
        assert not await gateway.dispatch_reaction(_payload(user_id=1))
        assert not await gateway.dispatch_reaction(_payload(member=SimpleNamespace(bot=True)))
        assert not await gateway.dispatch_reaction(_payload(message_id=555))
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_observer_is_dropped(self, client):
        callback = AsyncMock()
        gateway = DiscordGateway(client)
        gateway.register_reaction_observer(
            100, "🎉", callback, datetime.now(tz=UTC) - timedelta(seconds=1)
        )

        assert not await gateway.dispatch_reaction(_payload())
        assert not gateway.has_reaction_observer(100)
        callback.assert_not_awaited()

    def test_unregister(self, client):
        gateway = DiscordGateway(client)
        gateway.register_reaction_observer(100, "🎉", AsyncMock(), datetime.now(tz=UTC))

        assert gateway.unregister_reaction_observer(100)
        assert not gateway.unregister_reaction_observer(100)

    def test_add_view_delegates_to_client(self, client):
        view = object()
        DiscordGateway(client).add_view(view, 123)
        client.add_view.assert_called_once_with(view, message_id=123)
