"""Bookmark manager for owner-scoped CRUD operations."""

import logging
from typing import Any, Dict, List, Optional

from supabase import AsyncClient

from ..models.bookmark import Bookmark, BookmarkPatch, CreateBookmarkRequest
from ..models.session import AuthUser, ChangeEvent
from .change_feed import ChangeFeed
from .supabase_client import UpstreamError, fetch_rows

logger = logging.getLogger(__name__)


class BookmarkError(Exception):
    """Base class for bookmark errors mapped to responses at the API boundary."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnauthorizedError(BookmarkError):
    """No valid session at a protected boundary."""

    kind = "unauthorized"


class BookmarkValidationError(BookmarkError):
    """Required field missing or empty."""

    kind = "validation"


class BookmarkNotFoundError(BookmarkError):
    """No row matched the id and owner filters."""

    kind = "not_found"


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class BookmarkManager:
    """Manages bookmark CRUD operations against the record store.

    Every operation takes the session user explicitly; the owner column is
    always taken from it and never from request data. Successful writes are
    announced on the change feed.
    """

    def __init__(
        self,
        client: AsyncClient,
        change_feed: Optional[ChangeFeed] = None,
        table: str = "bookmarks",
    ):
        """Initialize bookmark manager.

        Args:
            client: Supabase client whose table queries are authorized as the caller
            change_feed: Feed that receives a notification after each write
            table: Name of the bookmarks table
        """
        self.client = client
        self.change_feed = change_feed
        self.table = table

    def _query(self):
        return self.client.table(self.table)

    async def create_bookmark(self, user: AuthUser, request: CreateBookmarkRequest) -> Bookmark:
        """Create a new bookmark owned by ``user``.

        Args:
            user: Session identity
            request: Validated request body

        Returns:
            Stored Bookmark including server-assigned id and created_at

        Raises:
            BookmarkValidationError: If title or url is missing
            UpstreamError: If the record store rejects the insert
        """
        if _is_blank(request.title) or _is_blank(request.url):
            raise BookmarkValidationError("Title and URL are required")

        rows = await fetch_rows(
            self._query().insert(
                {
                    "title": request.title,
                    "url": request.url,
                    "description": request.description,
                    "tags": request.tags,
                    "folder_id": request.folder_id,
                    "user_id": user.id,
                    "visit_count": 0,
                    "is_favorite": False,
                }
            )
        )
        if not rows:
            raise UpstreamError(f"Insert into {self.table} returned no row")
        bookmark = Bookmark.model_validate(rows[0])

        logger.info(f"Created bookmark {bookmark.id} for {user.id}")
        self._announce("INSERT", bookmark)

        return bookmark

    async def get_bookmark(self, user: AuthUser, bookmark_id: str) -> Bookmark:
        """Get one bookmark owned by ``user``.

        Raises:
            BookmarkNotFoundError: If no owned row has this id
        """
        rows = await fetch_rows(
            self._query().select("*").eq("id", bookmark_id).eq("user_id", user.id)
        )
        if not rows:
            raise BookmarkNotFoundError("Bookmark not found")
        return Bookmark.model_validate(rows[0])

    async def list_bookmarks(self, user: AuthUser) -> List[Bookmark]:
        """List all bookmarks owned by ``user``, newest first."""
        rows = await fetch_rows(
            self._query().select("*").eq("user_id", user.id).order("created_at", desc=True)
        )
        return [Bookmark.model_validate(row) for row in rows]

    async def update_bookmark(
        self, user: AuthUser, bookmark_id: str, patch: BookmarkPatch
    ) -> Bookmark:
        """Apply a sparse update to one bookmark owned by ``user``.

        Only the fields set on ``patch`` are written. The update is filtered
        by both id and owner, independently of the store's row rule.

        Raises:
            BookmarkValidationError: If title or url is set to an empty value
            BookmarkNotFoundError: If no row matched both filters
            UpstreamError: If the record store rejects the update
        """
        changes: Dict[str, Any] = patch.changes()

        for required in ("title", "url"):
            if required in changes and _is_blank(changes[required]):
                raise BookmarkValidationError(f"{required.capitalize()} cannot be empty")

        if not changes:
            return await self.get_bookmark(user, bookmark_id)

        rows = await fetch_rows(
            self._query().update(changes).eq("id", bookmark_id).eq("user_id", user.id)
        )
        if not rows:
            logger.warning(f"Update of {bookmark_id} by {user.id} matched no row")
            raise BookmarkNotFoundError("Bookmark not found")

        bookmark = Bookmark.model_validate(rows[0])

        logger.info(f"Updated bookmark {bookmark_id} ({', '.join(sorted(changes))})")
        self._announce("UPDATE", bookmark)

        return bookmark

    async def delete_bookmark(self, user: AuthUser, bookmark_id: str) -> Bookmark:
        """Delete one bookmark owned by ``user`` and return the removed row.

        Raises:
            BookmarkNotFoundError: If no row matched both filters
            UpstreamError: If the record store rejects the delete
        """
        rows = await fetch_rows(
            self._query().delete().eq("id", bookmark_id).eq("user_id", user.id)
        )
        if not rows:
            raise BookmarkNotFoundError("Bookmark not found")

        bookmark = Bookmark.model_validate(rows[0])

        logger.info(f"Deleted bookmark {bookmark_id}")
        self._announce("DELETE", bookmark)

        return bookmark

    def _announce(self, change_type: str, bookmark: Bookmark) -> None:
        if self.change_feed is None:
            return
        self.change_feed.publish(
            ChangeEvent(
                table=self.table,
                type=change_type,
                record_id=bookmark.id,
                owner=bookmark.user_id,
            )
        )
