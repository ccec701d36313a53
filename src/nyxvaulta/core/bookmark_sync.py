"""Live local mirror of a user's bookmarks, refreshed from a change feed."""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Protocol, Sequence, Set

from ..models.bookmark import Bookmark
from ..models.session import ChangeEvent

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]


class BookmarkSource(Protocol):
    """Where the mirror reads from and deletes through."""

    async def list_bookmarks(self) -> Sequence[Bookmark]: ...

    async def delete_bookmark(self, bookmark_id: str) -> Any: ...


def _log_notification(level: str, message: str) -> None:
    if level == "error":
        logger.warning(message)
    else:
        logger.info(message)


class BookmarkSync:
    """Keeps ``bookmarks`` equal to the full owned set.

    On activation it opens one subscription on the bookmarks table (every
    event type) and fetches the full set. Any notification triggers another
    full fetch; there is no incremental reconciliation. A failed fetch is
    reported through ``notify`` and leaves the last good set in place.

    Overlapping fetches are not cancelled. When an older fetch settles after
    a newer one has already been applied, its result is dropped.
    """

    def __init__(
        self,
        source: BookmarkSource,
        change_feed: Any,
        notify: Optional[Notifier] = None,
        on_change: Optional[Callable[[List[Bookmark]], None]] = None,
        table: str = "bookmarks",
        owner: Optional[str] = None,
    ):
        """Initialize the mirror.

        Args:
            source: Object providing list_bookmarks() and delete_bookmark(id)
            change_feed: Object providing subscribe(handler, table=, owner=)
            notify: Receives (level, message) transient notifications
            on_change: Receives the record list after every applied fetch
            table: Table to watch
            owner: Optional owner scope passed to the subscription
        """
        self.source = source
        self.change_feed = change_feed
        self.notify = notify or _log_notification
        self.on_change = on_change
        self.table = table
        self.owner = owner

        self.bookmarks: List[Bookmark] = []
        self.loading = True
        self._subscription = None
        self._pending: Set[asyncio.Task] = set()
        self._started = 0
        self._applied = 0

    @property
    def active(self) -> bool:
        return self._subscription is not None

    async def __aenter__(self) -> "BookmarkSync":
        await self.activate()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.deactivate()
        return False

    async def activate(self) -> None:
        """Subscribe to changes and load the initial set."""
        if self._subscription is not None:
            return
        self._subscription = self.change_feed.subscribe(
            self._handle_change, table=self.table, owner=self.owner
        )
        await self.refetch()

    async def deactivate(self) -> None:
        """Close the subscription and stop pending refetches."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

    async def refetch(self) -> None:
        """Fetch the full set and replace the local mirror."""
        self._started += 1
        sequence = self._started
        try:
            bookmarks = await self.source.list_bookmarks()
        except Exception as e:
            logger.warning(f"Bookmark fetch failed: {e}")
            self.notify("error", str(e) or "Failed to load bookmarks")
        else:
            if sequence < self._applied:
                logger.debug(f"Dropping stale fetch #{sequence} (#{self._applied} applied)")
                return
            self._applied = sequence
            self.bookmarks = list(bookmarks)
            if self.on_change is not None:
                self.on_change(self.bookmarks)
        finally:
            self.loading = False

    async def delete_bookmark(self, bookmark_id: str) -> None:
        """Ask the source to delete a bookmark.

        The local list is left alone; the resulting change notification
        brings it up to date.
        """
        try:
            await self.source.delete_bookmark(bookmark_id)
        except Exception as e:
            logger.warning(f"Delete of {bookmark_id} failed: {e}")
            self.notify("error", str(e) or "Failed to delete bookmark")
            return
        self.notify("success", "Bookmark deleted")

    async def wait_idle(self) -> None:
        """Wait until every scheduled refetch has settled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _handle_change(self, event: ChangeEvent) -> None:
        logger.debug(f"{event.type} on {event.table}, refetching")
        task = asyncio.ensure_future(self.refetch())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
