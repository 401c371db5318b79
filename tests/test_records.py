import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from conftest import CREATOR_ID, GUILD_ID
from giveaway_engine.cache import GiveawayCache
from giveaway_engine.models import EntryMode, PendingStatus
from giveaway_engine.records import RecordStore


class TestModuleStorage:
    @pytest.mark.asyncio
    async def test_missing_document_returns_copy_of_default(self, storage):
        default = {"items": []}
        loaded = await storage.load("doc", GUILD_ID, "ns", default)
        loaded["items"].append(1)
        assert default == {"items": []}

    @pytest.mark.asyncio
    async def test_documents_are_namespaced_per_guild(self, storage):
        await storage.save("doc", GUILD_ID, "ns", {"a": 1})
        await storage.save("doc", GUILD_ID, "other", {"b": 2})
        await storage.save("doc", 42, "ns", [3])

        assert await storage.load("doc", GUILD_ID, "ns", None) == {"a": 1}
        assert await storage.load("doc", GUILD_ID, "other", None) == {"b": 2}
        assert await storage.list_guilds_with_data() == [42, GUILD_ID]


class TestGiveawayRecords:
    @pytest.mark.asyncio
    async def test_add_persists_through_fresh_cache(self, store, storage, make_giveaway):
        giveaway = make_giveaway(participants=[1, 2])
        assert await store.add(giveaway, GUILD_ID) is giveaway

        fresh = RecordStore(storage, GiveawayCache())
        loaded = await fresh.get(giveaway.id, GUILD_ID)
        assert loaded is not None
        assert loaded.title == giveaway.title
        assert loaded.participants == [1, 2]
        assert loaded.end_time == giveaway.end_time

    @pytest.mark.asyncio
    async def test_duplicate_id_is_rejected(self, store, make_giveaway):
        giveaway = make_giveaway()
        await store.add(giveaway, GUILD_ID)
        duplicate = make_giveaway(id=giveaway.id, title="Other")

        assert await store.add(duplicate, GUILD_ID) is None
        assert len(await store.list_all(GUILD_ID)) == 1
        assert (await store.get(giveaway.id, GUILD_ID)).title == "Launch Party"

    @pytest.mark.asyncio
    async def test_concurrent_adds_with_same_id_keep_one(self, store, make_giveaway):
        first = make_giveaway()
        second = make_giveaway(id=first.id)

        results = await asyncio.gather(store.add(first, GUILD_ID), store.add(second, GUILD_ID))

        assert sum(result is not None for result in results) == 1
        assert len(await store.list_all(GUILD_ID)) == 1

    @pytest.mark.asyncio
    async def test_add_validates_shape(self, store, make_giveaway):
        with pytest.raises(ValueError):
            await store.add(make_giveaway(winner_count=0), GUILD_ID)
        now = datetime.now(tz=UTC)
        with pytest.raises(ValueError):
            await store.add(make_giveaway(start_time=now, end_time=now), GUILD_ID)

    @pytest.mark.asyncio
    async def test_add_normalizes_attempt_limit(self, store, make_giveaway):
        giveaway = make_giveaway(entry_mode=EntryMode.TRIVIA, max_trivia_attempts=0)
        await store.add(giveaway, GUILD_ID)
        assert (await store.get(giveaway.id, GUILD_ID)).max_trivia_attempts == -1

    @pytest.mark.asyncio
    async def test_update_applies_changes_and_rejects_unknown_fields(self, store, make_giveaway):
        giveaway = make_giveaway()
        await store.add(giveaway, GUILD_ID)

        assert await store.update(giveaway.id, GUILD_ID, title="Renamed", winner_count=3)
        stored = await store.get(giveaway.id, GUILD_ID)
        assert (stored.title, stored.winner_count) == ("Renamed", 3)

        with pytest.raises(ValueError):
            await store.update(giveaway.id, GUILD_ID, colour="red")
        assert await store.update("missing", GUILD_ID, title="x") is False

    @pytest.mark.asyncio
    async def test_ended_giveaway_cannot_be_reopened(self, store, make_giveaway):
        giveaway = make_giveaway(ended=True)
        await store.add(giveaway, GUILD_ID)
        with pytest.raises(ValueError):
            await store.update(giveaway.id, GUILD_ID, ended=False)

    @pytest.mark.asyncio
    async def test_remove_disarms_timer_and_clears_user_data(self, store, cache, make_giveaway):
        giveaway = make_giveaway(entry_mode=EntryMode.TRIVIA, trivia_answer="x")
        await store.add(giveaway, GUILD_ID)
        await store.increment_trivia_attempts(giveaway.id, 7, GUILD_ID)
        timer = asyncio.create_task(asyncio.sleep(60))
        cache.set_timer(giveaway.id, timer)

        assert await store.remove(giveaway.id, GUILD_ID)
        await asyncio.sleep(0.01)

        assert not cache.has_timer(giveaway.id)
        assert timer.cancelled()
        assert await store.get(giveaway.id, GUILD_ID) is None
        assert await store.get_trivia_attempts(giveaway.id, 7, GUILD_ID) == 0
        assert await store.remove(giveaway.id, GUILD_ID) is False

    @pytest.mark.asyncio
    async def test_list_all_orders_newest_first_and_filters_active(self, store, make_giveaway):
        now = datetime.now(tz=UTC)
        older = make_giveaway(start_time=now - timedelta(days=2))
        newer = make_giveaway(start_time=now - timedelta(hours=1))
        finished = make_giveaway(start_time=now - timedelta(days=1), ended=True)
        for giveaway in (older, newer, finished):
            await store.add(giveaway, GUILD_ID)

        listed = await store.list_all(GUILD_ID)
        assert [g.id for g in listed] == [newer.id, finished.id, older.id]
        active = await store.list_all(GUILD_ID, active_only=True)
        assert [g.id for g in active] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_add_participant_is_idempotent_and_requires_open(self, store, make_giveaway):
        live = make_giveaway()
        closed = make_giveaway(ended=True)
        await store.add(live, GUILD_ID)
        await store.add(closed, GUILD_ID)

        assert await store.add_participant(live.id, 5, GUILD_ID)
        assert await store.add_participant(live.id, 5, GUILD_ID) is False
        assert await store.add_participant(closed.id, 5, GUILD_ID) is False
        assert (await store.get(live.id, GUILD_ID)).participants == [5]

    @pytest.mark.asyncio
    async def test_load_active_uncached_reads_storage(self, store, make_giveaway):
        live = make_giveaway()
        cancelled = make_giveaway(cancelled=True, ended=True)
        await store.add(live, GUILD_ID)
        await store.add(cancelled, GUILD_ID)
        store.clear_cache(GUILD_ID)

        active = await store.load_active_uncached(GUILD_ID)
        assert [g.id for g in active] == [live.id]


class TestDrafts:
    @pytest.mark.asyncio
    async def test_create_and_update_pending(self, store):
        pending = await store.create_pending(GUILD_ID, CREATOR_ID, title="Spring Raffle")
        assert pending.created_by == CREATOR_ID
        assert pending.status is PendingStatus.DRAFT

        updated = await store.update_pending(
            GUILD_ID, pending.id, prizes=["Mug"], duration_ms=60_000
        )
        assert updated.status is PendingStatus.READY
        assert (await store.get_pending(GUILD_ID, pending.id)).prizes == ["Mug"]

    @pytest.mark.asyncio
    async def test_unknown_draft_fields_raise(self, store):
        with pytest.raises(ValueError):
            await store.create_pending(GUILD_ID, CREATOR_ID, colour="red")
        pending = await store.create_pending(GUILD_ID, CREATOR_ID)
        with pytest.raises(ValueError):
            await store.update_pending(GUILD_ID, pending.id, id="other")

    @pytest.mark.asyncio
    async def test_status_ready_pins_incomplete_draft(self, store):
        pending = await store.create_pending(GUILD_ID, CREATOR_ID)
        pinned = await store.update_pending(GUILD_ID, pending.id, status="ready")

        assert pinned.pinned_ready is True
        assert pinned.status is PendingStatus.READY
        ready = await store.list_ready_pending(GUILD_ID)
        assert [draft.id for draft in ready] == [pending.id]

    @pytest.mark.asyncio
    async def test_delete_and_list_pending(self, store):
        first = await store.create_pending(GUILD_ID, CREATOR_ID)
        second = await store.create_pending(GUILD_ID, CREATOR_ID)

        assert await store.delete_pending(GUILD_ID, first.id)
        assert await store.delete_pending(GUILD_ID, first.id) is False
        assert [draft.id for draft in await store.list_pending(GUILD_ID)] == [second.id]
        assert await store.update_pending(GUILD_ID, first.id, title="x") is None


class TestUserData:
    @pytest.mark.asyncio
    async def test_trivia_attempts_are_counted_per_user(self, store):
        assert await store.get_trivia_attempts("g1", 1, GUILD_ID) == 0
        assert await store.increment_trivia_attempts("g1", 1, GUILD_ID) == 1
        assert await store.increment_trivia_attempts("g1", 1, GUILD_ID) == 2
        assert await store.get_trivia_attempts("g1", 2, GUILD_ID) == 0

        await store.clear_user_data("g1", GUILD_ID)
        assert await store.get_trivia_attempts("g1", 1, GUILD_ID) == 0
