"""HTTP client for a running NyxVaulta server.

``BookmarkApiClient`` speaks the service's JSON API with the session cookie
of a signed-in user, and ``ApiChangeFeed`` turns the server's change stream
into the subscribe/close interface ``BookmarkSync`` expects.
"""

import asyncio
import inspect
import logging
from http.cookies import CookieError, SimpleCookie
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import httpx

from .models.bookmark import Bookmark
from .models.session import ChangeEvent

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Error response (or no response) from the NyxVaulta server."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BookmarkApiClient:
    """Async client for the bookmark endpoints."""

    def __init__(
        self,
        base_url: str,
        session: Optional[str] = None,
        cookie_prefix: str = "sb",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server root, e.g. http://127.0.0.1:8000
            session: Value of the server's session cookie (``sb-auth-token``)
            cookie_prefix: Prefix of the server's session cookie names
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.cookie_prefix = cookie_prefix
        self.timeout = timeout
        self._transport = transport
        self.session_cookies: Dict[str, str] = {}
        if session:
            self.session_cookies[self.session_cookie] = session

    @property
    def session_cookie(self) -> str:
        return f"{self.cookie_prefix}-auth-token"

    @property
    def session(self) -> Optional[str]:
        """Current session cookie value, joined if the server split it."""
        if self.session_cookies.get(self.session_cookie):
            return self.session_cookies[self.session_cookie]
        chunks = []
        while f"{self.session_cookie}.{len(chunks)}" in self.session_cookies:
            chunks.append(self.session_cookies[f"{self.session_cookie}.{len(chunks)}"])
        return "".join(chunks) or None

    def _client(self, timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            cookies=self.session_cookies,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    def _remember_session(self, response: httpx.Response) -> None:
        """Pick up session cookies the server refreshed (or cleared) for us."""
        for header in response.headers.get_list("set-cookie"):
            try:
                parsed = SimpleCookie(header)
            except CookieError:
                continue
            for name, morsel in parsed.items():
                if not name.startswith(self.session_cookie):
                    continue
                if morsel.value and morsel["max-age"] != "0":
                    self.session_cookies[name] = morsel.value
                else:
                    self.session_cookies.pop(name, None)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return "Request failed"
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return "Request failed"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ApiError("Request failed") from e

        self._remember_session(response)
        if response.status_code >= 400:
            raise ApiError(self._error_message(response), response.status_code)
        return response

    async def list_bookmarks(
        self,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        favorites_only: bool = False,
    ) -> List[Bookmark]:
        """Fetch the full owned set, newest first unless ``sort`` says otherwise."""
        params: Dict[str, Any] = {}
        if search:
            params["search"] = search
        if sort:
            params["sort"] = sort
        if favorites_only:
            params["favorites_only"] = "true"

        response = await self._request("GET", "/api/bookmarks", params=params or None)
        return [Bookmark.model_validate(row) for row in response.json()["bookmarks"]]

    async def get_bookmark(self, bookmark_id: str) -> Bookmark:
        response = await self._request("GET", f"/api/bookmarks/{bookmark_id}")
        return Bookmark.model_validate(response.json())

    async def create_bookmark(
        self,
        title: str,
        url: str,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        folder_id: Optional[str] = None,
    ) -> Bookmark:
        body: Dict[str, Any] = {"title": title, "url": url}
        if description is not None:
            body["description"] = description
        if tags is not None:
            body["tags"] = tags
        if folder_id is not None:
            body["folder_id"] = folder_id

        response = await self._request("POST", "/api/bookmarks", json=body)
        return Bookmark.model_validate(response.json())

    async def update_bookmark(self, bookmark_id: str, **changes: Any) -> Bookmark:
        """Send only the given fields; everything else is left unchanged."""
        response = await self._request("PATCH", f"/api/bookmarks/{bookmark_id}", json=changes)
        return Bookmark.model_validate(response.json())

    async def toggle_favorite(self, bookmark_id: str, current: bool) -> Bookmark:
        return await self.update_bookmark(bookmark_id, is_favorite=not current)

    async def delete_bookmark(self, bookmark_id: str) -> Bookmark:
        response = await self._request("DELETE", f"/api/bookmarks/{bookmark_id}")
        return Bookmark.model_validate(response.json())

    async def export(self, fmt: str = "json") -> Tuple[str, str]:
        """Download an export and return ``(filename, content)``."""
        response = await self._request("GET", "/api/bookmarks/export", params={"format": fmt})
        filename = f"bookmarks.{fmt}"
        disposition = response.headers.get("content-disposition", "")
        if "filename=" in disposition:
            filename = disposition.split("filename=", 1)[1].strip('"')
        return filename, response.text

    async def changes(
        self, on_open: Optional[Callable[[], Union[None, Awaitable[Any]]]] = None
    ) -> AsyncIterator[ChangeEvent]:
        """Yield change events from the server until the stream ends.

        ``on_open`` is called (and awaited if it returns an awaitable) once
        the server has accepted the stream, before any event is read.
        """
        timeout = httpx.Timeout(self.timeout, read=None)
        try:
            async with self._client(timeout) as client:
                async with client.stream("GET", "/api/bookmarks/changes") as response:
                    self._remember_session(response)
                    if response.status_code >= 400:
                        await response.aread()
                        raise ApiError(self._error_message(response), response.status_code)
                    if on_open is not None:
                        opened = on_open()
                        if inspect.isawaitable(opened):
                            await opened

                    data: List[str] = []
                    async for line in response.aiter_lines():
                        if not line:
                            if data:
                                yield ChangeEvent.model_validate_json("\n".join(data))
                                data = []
                            continue
                        if line.startswith(":"):
                            continue
                        if line.startswith("data:"):
                            data.append(line[5:].lstrip())
        except httpx.HTTPError as e:
            logger.warning(f"Change stream failed: {e}")
            raise ApiError("Request failed") from e


class ApiSubscription:
    """Running pump from the server's change stream into one handler."""

    def __init__(self, task: "asyncio.Task[None]"):
        self._task = task

    @property
    def closed(self) -> bool:
        return self._task.done()

    async def close(self) -> None:
        if self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class ApiChangeFeed:
    """Change feed backed by a remote server's event stream.

    The stream is reopened after ``reconnect_delay`` seconds whenever it
    drops, until the subscription is closed. Changes made while it was down
    are never replayed, so ``on_reconnect`` is called each time the stream
    opens again after the first time; ``BookmarkSync.refetch`` fits there.
    """

    def __init__(
        self,
        client: BookmarkApiClient,
        reconnect_delay: float = 2.0,
        on_reconnect: Optional[Callable[[], Union[None, Awaitable[Any]]]] = None,
    ):
        self.client = client
        self.reconnect_delay = reconnect_delay
        self.on_reconnect = on_reconnect

    def subscribe(
        self,
        handler: Callable[[ChangeEvent], Any],
        table: str = "*",
        owner: Optional[str] = None,
    ) -> ApiSubscription:
        # owner is implied by the session the stream is opened with
        return ApiSubscription(asyncio.ensure_future(self._pump(handler, table)))

    async def _resync(self) -> None:
        if self.on_reconnect is None:
            return
        logger.info("Change stream reopened, resynchronizing")
        result = self.on_reconnect()
        if inspect.isawaitable(result):
            await result

    async def _pump(self, handler: Callable[[ChangeEvent], Any], table: str) -> None:
        opens = 0

        async def _opened() -> None:
            nonlocal opens
            opens += 1
            if opens > 1:
                await self._resync()

        while True:
            stream = self.client.changes(on_open=_opened)
            try:
                async for event in stream:
                    if table != "*" and event.table != table:
                        continue
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
            except ApiError as e:
                logger.warning(f"Change stream closed: {e.message}")
            except Exception as e:
                logger.error(f"Change stream pump failed: {e}")
            finally:
                await stream.aclose()
            await asyncio.sleep(self.reconnect_delay)
