"""Dashboard: the derived bookmark view plus summary statistics."""

from fastapi import APIRouter, Depends, Query

from ..core.bookmark_manager import BookmarkManager
from ..core.bookmark_view import SortKey, filter_and_sort, summarize
from ..models.session import AuthUser
from .dependencies import get_bookmark_manager, get_current_user

router = APIRouter()


@router.get("/dashboard", response_model=dict)
async def dashboard(
    search: str = Query(""),
    sort: str = Query(SortKey.NEWEST.value),
    favorites_only: bool = Query(False),
    user: AuthUser = Depends(get_current_user),
    manager: BookmarkManager = Depends(get_bookmark_manager),
):
    bookmarks = await manager.list_bookmarks(user)
    shown = filter_and_sort(bookmarks, search, sort, favorites_only)

    return {
        "user": {"id": user.id, "email": user.email},
        "filters": {"search": search, "sort": sort, "favorites_only": favorites_only},
        "stats": summarize(bookmarks, shown),
        "bookmarks": shown,
    }
