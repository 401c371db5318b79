from datetime import UTC, datetime

import pytest

from conftest import GUILD_ID
from giveaway_engine.models import EntryMode


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_then_end_is_a_no_op(self, store, ending, gateway, make_giveaway):
        giveaway = make_giveaway(participants=[1, 2])
        await store.add(giveaway, GUILD_ID)

        assert await ending.cancel(giveaway.id, GUILD_ID)
        assert await ending.process_end(giveaway.id, GUILD_ID) is None

        stored = await store.get(giveaway.id, GUILD_ID)
        assert stored.cancelled and stored.ended
        assert stored.winners == []
        assert gateway.sent == []
        edit = gateway.messages[giveaway.message_id].edits[-1]
        assert edit["embed"].title.startswith("🚫 Giveaway Cancelled")
        assert edit["view"] is None

    @pytest.mark.asyncio
    async def test_cancel_disarms_timer(self, store, ending, scheduler, make_giveaway):
        giveaway = make_giveaway()
        await store.add(giveaway, GUILD_ID)
        await scheduler.schedule_end(giveaway)
        assert scheduler.is_armed(giveaway.id)

        assert await ending.cancel(giveaway.id, GUILD_ID)

        assert not scheduler.is_armed(giveaway.id)
        scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_cancel_clears_reactions_in_reaction_mode(
        self, store, ending, gateway, make_giveaway
    ):
        giveaway = make_giveaway(
            entry_mode=EntryMode.REACTION,
            reaction_identifier="🎉",
            reaction_display_emoji="🎉",
        )
        await store.add(giveaway, GUILD_ID)
        gateway.observers[giveaway.message_id] = ("🎉", None, giveaway.end_time)

        assert await ending.cancel(giveaway.id, GUILD_ID)

        assert gateway.messages[giveaway.message_id].reactions_cleared
        assert giveaway.message_id not in gateway.observers

    @pytest.mark.asyncio
    async def test_cancel_preconditions(self, store, ending, make_giveaway):
        finished = make_giveaway(ended=True)
        await store.add(finished, GUILD_ID)
        live = make_giveaway()
        await store.add(live, GUILD_ID)

        assert await ending.cancel("missing", GUILD_ID) is False
        assert await ending.cancel(finished.id, GUILD_ID) is False
        assert await ending.cancel(live.id, GUILD_ID) is True
        assert await ending.cancel(live.id, GUILD_ID) is False

    @pytest.mark.asyncio
    async def test_end_marks_cancelled_record_as_ended(self, store, ending, gateway, make_giveaway):
        giveaway = make_giveaway(cancelled=True)
        await store.add(giveaway, GUILD_ID)

        assert await ending.process_end(giveaway.id, GUILD_ID) is None

        stored = await store.get(giveaway.id, GUILD_ID)
        assert stored.ended and stored.cancelled
        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_missing_announcement_does_not_block_cancel(
        self, store, ending, gateway, make_giveaway
    ):
        giveaway = make_giveaway()
        await store.add(giveaway, GUILD_ID)
        del gateway.messages[giveaway.message_id]

        assert await ending.cancel(giveaway.id, GUILD_ID)
        assert (await store.get(giveaway.id, GUILD_ID)).cancelled


class TestForceFinish:
    @pytest.mark.asyncio
    async def test_ends_before_end_time(self, store, ending, scheduler, make_giveaway):
        giveaway = make_giveaway(participants=[7])
        await store.add(giveaway, GUILD_ID)
        await scheduler.schedule_end(giveaway)

        result = await ending.force_finish(giveaway.id, GUILD_ID)

        assert result.winners == [7]
        assert result.end_time > datetime.now(tz=UTC)
        assert not scheduler.is_armed(giveaway.id)
        assert await ending.force_finish(giveaway.id, GUILD_ID) is None
        scheduler.shutdown()
