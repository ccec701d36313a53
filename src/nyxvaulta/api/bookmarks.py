"""Bookmark endpoints."""

import asyncio
import logging
from typing import AsyncIterator, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse
from supabase import AsyncClient

from ..core.bookmark_manager import BookmarkManager
from ..core.bookmark_view import SortKey, filter_and_sort
from ..core.change_feed import ChangeFeed, RealtimeRelay
from ..core.export import MEDIA_TYPES, export_bookmarks, generate_filename
from ..core.supabase_client import access_token_for
from ..models.bookmark import (
    Bookmark,
    BookmarkPatch,
    CreateBookmarkRequest,
    UpdateBookmarkRequest,
)
from ..models.session import AuthUser, ChangeEvent
from .dependencies import (
    AppServices,
    get_bookmark_manager,
    get_current_user,
    get_services,
    get_supabase,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def carry_cookies(source: Response, target: Response) -> Response:
    """Copy Set-Cookie headers from the injected response onto ``target``."""
    for value in source.headers.getlist("set-cookie"):
        target.headers.append("set-cookie", value)
    return target


async def change_stream(
    request: Request,
    feed: ChangeFeed,
    owner: str,
    keepalive: float,
    table: str = "bookmarks",
    relay: Optional[RealtimeRelay] = None,
    access_token: Optional[str] = None,
    relay_timeout: float = 10.0,
) -> AsyncIterator[str]:
    """Server-sent events for one subscriber.

    Changes arrive from Supabase Realtime through ``relay``, which covers
    writes made by every worker. Writes made by this worker are also taken
    from the local feed, so a subscriber may see the same change twice.
    Without a relay, or when it cannot connect, only local writes are seen.

    The subscriptions are opened when the stream starts and closed when the
    client goes away or the generator is closed.
    """
    queue: "asyncio.Queue" = asyncio.Queue()

    def _relayed(event: ChangeEvent) -> None:
        if event.owner is None or event.owner == owner:
            queue.put_nowait(event)

    subscription = feed.subscribe(queue.put_nowait, table=table, owner=owner)
    logger.debug(f"Change stream opened for {owner}")
    try:
        if relay is not None:
            try:
                await asyncio.wait_for(relay.start(_relayed, access_token), relay_timeout)
            except Exception as e:
                logger.warning(f"Realtime unavailable, streaming local changes only: {e}")
        yield ": connected\n\n"
        while not await request.is_disconnected():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield f"event: change\ndata: {event.model_dump_json()}\n\n"
    finally:
        await subscription.close()
        if relay is not None:
            await relay.stop()
        logger.debug(f"Change stream closed for {owner}")


@router.get("/bookmarks", response_model=dict)
async def list_bookmarks(
    search: str = Query("", description="Case-insensitive substring filter"),
    sort: str = Query(SortKey.NEWEST.value, description="newest, oldest, title or title-desc"),
    favorites_only: bool = Query(False, description="Only favorite bookmarks"),
    user: AuthUser = Depends(get_current_user),
    manager: BookmarkManager = Depends(get_bookmark_manager),
):
    """List the signed-in user's bookmarks, newest first by default."""
    bookmarks = await manager.list_bookmarks(user)
    if search or favorites_only or sort != SortKey.NEWEST.value:
        bookmarks = filter_and_sort(bookmarks, search, sort, favorites_only)

    return {"bookmarks": bookmarks, "total": len(bookmarks)}


@router.post("/bookmarks", response_model=Bookmark, status_code=201)
async def create_bookmark(
    body: CreateBookmarkRequest,
    user: AuthUser = Depends(get_current_user),
    manager: BookmarkManager = Depends(get_bookmark_manager),
):
    """Create a bookmark owned by the signed-in user."""
    return await manager.create_bookmark(user, body)


@router.get("/bookmarks/export")
async def export(
    response: Response,
    format: Literal["json", "csv"] = Query("json", description="Export format"),
    user: AuthUser = Depends(get_current_user),
    manager: BookmarkManager = Depends(get_bookmark_manager),
):
    """Download every bookmark as a JSON or CSV attachment."""
    bookmarks = await manager.list_bookmarks(user)
    filename = generate_filename(format)
    logger.info(f"Exporting {len(bookmarks)} bookmark(s) as {format}")

    download = Response(
        content=export_bookmarks(bookmarks, format),
        media_type=MEDIA_TYPES[format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
    return carry_cookies(response, download)


@router.get("/bookmarks/changes")
async def stream_changes(
    request: Request,
    response: Response,
    user: AuthUser = Depends(get_current_user),
    supabase: AsyncClient = Depends(get_supabase),
    services: AppServices = Depends(get_services),
):
    """Stream change notifications for the signed-in user's bookmarks."""
    access_token = await access_token_for(supabase)
    relay = RealtimeRelay(services.clients.browser_client(access_token))
    stream = StreamingResponse(
        change_stream(
            request,
            services.change_feed,
            user.id,
            services.config.change_feed_keepalive_seconds,
            relay=relay,
            access_token=access_token,
            relay_timeout=services.config.request_timeout_seconds,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
    return carry_cookies(response, stream)


@router.get("/bookmarks/{bookmark_id}", response_model=Bookmark)
async def get_bookmark(
    bookmark_id: str,
    user: AuthUser = Depends(get_current_user),
    manager: BookmarkManager = Depends(get_bookmark_manager),
):
    """Get one bookmark by ID."""
    return await manager.get_bookmark(user, bookmark_id)


@router.patch("/bookmarks/{bookmark_id}", response_model=Bookmark)
async def update_bookmark(
    bookmark_id: str,
    body: UpdateBookmarkRequest,
    user: AuthUser = Depends(get_current_user),
    manager: BookmarkManager = Depends(get_bookmark_manager),
):
    """Apply the fields present in the body; absent fields are left alone."""
    return await manager.update_bookmark(user, bookmark_id, BookmarkPatch.from_request(body))


@router.delete("/bookmarks/{bookmark_id}", response_model=Bookmark)
async def delete_bookmark(
    bookmark_id: str,
    user: AuthUser = Depends(get_current_user),
    manager: BookmarkManager = Depends(get_bookmark_manager),
):
    """Delete a bookmark and return the removed row."""
    return await manager.delete_bookmark(user, bookmark_id)
