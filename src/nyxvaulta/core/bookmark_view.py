"""Filtered and sorted views over an in-memory bookmark list."""

import unicodedata
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..models.bookmark import Bookmark


class SortKey(str, Enum):
    """Supported orderings for the bookmark list."""

    NEWEST = "newest"
    OLDEST = "oldest"
    TITLE_ASC = "title"
    TITLE_DESC = "title-desc"


def _title_key(bookmark: Bookmark) -> Tuple[str, str]:
    """Collation key approximating a locale-aware compare.

    Accents and case are ignored first; the raw title breaks ties so the
    order stays total.
    """
    decomposed = unicodedata.normalize("NFKD", bookmark.title)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), bookmark.title


def matches_query(bookmark: Bookmark, query: str) -> bool:
    """Case-insensitive substring match on title, url, description or any tag."""
    needle = query.lower()
    if needle in bookmark.title.lower() or needle in bookmark.url.lower():
        return True
    if bookmark.description and needle in bookmark.description.lower():
        return True
    return any(needle in tag.lower() for tag in bookmark.tags or [])


def filter_and_sort(
    bookmarks: Sequence[Bookmark],
    search_query: str = "",
    sort_by: str = SortKey.NEWEST.value,
    favorites_only: bool = False,
) -> List[Bookmark]:
    """Derive the displayed list. Pure: the input sequence is never modified.

    An empty ``search_query`` disables the search step; a non-empty one is
    used as-is, whitespace included. An unknown ``sort_by`` keeps the
    filtered order.
    """
    filtered = list(bookmarks)

    if search_query:
        filtered = [b for b in filtered if matches_query(b, search_query)]

    if favorites_only:
        filtered = [b for b in filtered if b.is_favorite]

    sort_value = sort_by.value if isinstance(sort_by, SortKey) else sort_by

    if sort_value == SortKey.NEWEST.value:
        filtered.sort(key=lambda b: b.created_at, reverse=True)
    elif sort_value == SortKey.OLDEST.value:
        filtered.sort(key=lambda b: b.created_at)
    elif sort_value == SortKey.TITLE_ASC.value:
        filtered.sort(key=_title_key)
    elif sort_value == SortKey.TITLE_DESC.value:
        filtered.sort(key=_title_key, reverse=True)

    return filtered


def summarize(bookmarks: Sequence[Bookmark], shown: Sequence[Bookmark]) -> Dict[str, int]:
    """Dashboard counters: total, favorites, distinct tags, currently showing."""
    return {
        "total": len(bookmarks),
        "favorites": sum(1 for b in bookmarks if b.is_favorite),
        "tags": len({tag for b in bookmarks for tag in b.tags or []}),
        "showing": len(shown),
    }


class BookmarkView:
    """Memoized ``filter_and_sort``.

    The result is recomputed only when the record list object, the search
    text, the sort key or the favorites flag changes. Callers replace the
    list rather than mutating it in place, so identity marks a new set.
    """

    def __init__(self):
        self._key: Optional[Tuple[int, str, str, bool]] = None
        self._source: Optional[Sequence[Bookmark]] = None
        self._result: List[Bookmark] = []
        self.computations = 0

    def derive(
        self,
        bookmarks: Sequence[Bookmark],
        search_query: str = "",
        sort_by: str = SortKey.NEWEST.value,
        favorites_only: bool = False,
    ) -> List[Bookmark]:
        sort_value = sort_by.value if isinstance(sort_by, SortKey) else sort_by
        key = (id(bookmarks), search_query, sort_value, favorites_only)
        if key != self._key or self._source is not bookmarks:
            self._result = filter_and_sort(bookmarks, search_query, sort_value, favorites_only)
            # Holding the source keeps its id from being reused
            self._source = bookmarks
            self._key = key
            self.computations += 1
        return list(self._result)
