"""Tests for the live bookmark mirror."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from nyxvaulta.core.bookmark_sync import BookmarkSync
from nyxvaulta.core.change_feed import ChangeFeed
from nyxvaulta.models.bookmark import Bookmark
from nyxvaulta.models.session import ChangeEvent

BASE = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _bookmark(n: int) -> Bookmark:
    return Bookmark(
        id=f"b{n}",
        user_id="user-alice",
        title=f"Bookmark {n}",
        url=f"https://example.com/{n}",
        created_at=BASE + timedelta(minutes=n),
    )


class FakeSource:
    """Bookmark source whose contents and failures the test controls."""

    def __init__(self, bookmarks: Optional[List[Bookmark]] = None):
        self.bookmarks = list(bookmarks or [])
        self.fail_with: Optional[Exception] = None
        self.fetches = 0
        self.deleted: List[str] = []

    async def list_bookmarks(self):
        self.fetches += 1
        if self.fail_with is not None:
            raise self.fail_with
        return sorted(self.bookmarks, key=lambda b: b.created_at, reverse=True)

    async def delete_bookmark(self, bookmark_id):
        if self.fail_with is not None:
            raise self.fail_with
        self.deleted.append(bookmark_id)


class CountingFeed(ChangeFeed):
    def __init__(self):
        super().__init__()
        self.subscriptions = []

    def subscribe(self, handler, table="*", owner=None):
        self.subscriptions.append((table, owner))
        return super().subscribe(handler, table=table, owner=owner)


def _change(change_type="INSERT"):
    return ChangeEvent(table="bookmarks", type=change_type, record_id="x", owner="user-alice")


@pytest.fixture
def notes():
    return []


@pytest.fixture
def feed():
    return CountingFeed()


class TestBookmarkSync:
    """Test BookmarkSync behaviour."""

    @pytest.mark.asyncio
    async def test_activate_subscribes_once_and_loads(self, feed, notes):
        source = FakeSource([_bookmark(1), _bookmark(2)])
        sync = BookmarkSync(source, feed, notify=lambda *n: notes.append(n))

        assert sync.loading is True
        await sync.activate()
        await sync.activate()

        assert feed.subscriptions == [("bookmarks", None)]
        assert [b.id for b in sync.bookmarks] == ["b2", "b1"]
        assert sync.loading is False
        assert notes == []
        await sync.deactivate()

    @pytest.mark.asyncio
    async def test_any_change_triggers_full_refetch(self, feed):
        source = FakeSource([_bookmark(1)])
        async with BookmarkSync(source, feed) as sync:
            source.bookmarks.append(_bookmark(2))
            feed.publish(_change("INSERT"))
            await sync.wait_idle()
            assert [b.id for b in sync.bookmarks] == ["b2", "b1"]

            source.bookmarks = [_bookmark(2)]
            feed.publish(_change("DELETE"))
            await sync.wait_idle()
            assert [b.id for b in sync.bookmarks] == ["b2"]

        assert source.fetches == 3

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_last_good_set(self, feed, notes):
        source = FakeSource([_bookmark(1)])
        sync = BookmarkSync(source, feed, notify=lambda *n: notes.append(n))
        await sync.activate()

        source.fail_with = RuntimeError("network down")
        await sync.refetch()

        assert [b.id for b in sync.bookmarks] == ["b1"]
        assert notes == [("error", "network down")]
        await sync.deactivate()

    @pytest.mark.asyncio
    async def test_loading_clears_even_when_first_fetch_fails(self, feed, notes):
        source = FakeSource()
        source.fail_with = RuntimeError("")
        sync = BookmarkSync(source, feed, notify=lambda *n: notes.append(n))

        await sync.activate()

        assert sync.loading is False
        assert sync.bookmarks == []
        assert notes == [("error", "Failed to load bookmarks")]
        await sync.deactivate()

    @pytest.mark.asyncio
    async def test_delete_is_not_optimistic(self, feed, notes):
        source = FakeSource([_bookmark(1)])
        sync = BookmarkSync(source, feed, notify=lambda *n: notes.append(n))
        await sync.activate()

        await sync.delete_bookmark("b1")

        assert source.deleted == ["b1"]
        assert [b.id for b in sync.bookmarks] == ["b1"]
        assert notes == [("success", "Bookmark deleted")]
        await sync.deactivate()

    @pytest.mark.asyncio
    async def test_delete_failure_is_notified_not_raised(self, feed, notes):
        source = FakeSource([_bookmark(1)])
        sync = BookmarkSync(source, feed, notify=lambda *n: notes.append(n))
        await sync.activate()
        source.fail_with = RuntimeError("forbidden")

        await sync.delete_bookmark("b1")

        assert notes == [("error", "forbidden")]
        await sync.deactivate()

    @pytest.mark.asyncio
    async def test_stale_fetch_result_is_dropped(self, feed):
        release_first = asyncio.Event()
        results = [[_bookmark(1)], [_bookmark(1), _bookmark(2)]]

        class SlowFirstSource(FakeSource):
            async def list_bookmarks(self):
                self.fetches += 1
                call = self.fetches
                if call == 1:
                    await release_first.wait()
                return results[call - 1]

        sync = BookmarkSync(SlowFirstSource(), feed)
        first = asyncio.ensure_future(sync.refetch())
        await asyncio.sleep(0)
        await sync.refetch()
        release_first.set()
        await first

        assert [b.id for b in sync.bookmarks] == ["b1", "b2"]

    @pytest.mark.asyncio
    async def test_on_change_receives_each_applied_set(self, feed):
        seen = []
        source = FakeSource([_bookmark(1)])
        async with BookmarkSync(source, feed, on_change=seen.append):
            pass

        assert [[b.id for b in batch] for batch in seen] == [["b1"]]

    @pytest.mark.asyncio
    async def test_deactivate_releases_subscription(self, feed):
        sync = BookmarkSync(FakeSource(), feed)
        await sync.activate()
        assert feed.subscriber_count == 1

        await sync.deactivate()

        assert not sync.active
        assert feed.subscriber_count == 0
