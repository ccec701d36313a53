"""Cookie bridge between an in-flight request and its eventual response."""

import logging
from typing import Dict, List, Optional, Tuple

from fastapi import Request, Response

from ..core.supabase_client import CookieOptions

logger = logging.getLogger(__name__)


class CookieBridge:
    """Read, write and clear cookies by name for one request.

    Every write lands in two places: the request's ``cookie`` header in the
    ASGI scope, so anything downstream in the same request reads the new
    value, and the list of writes applied to the response the browser gets.
    When a ``response`` is given (FastAPI's injected response) writes are
    also applied to it immediately.
    """

    def __init__(self, request: Request, response: Optional[Response] = None):
        self.request = request
        self.response = response
        self._jar: Dict[str, str] = dict(request.cookies)
        self._writes: Dict[str, Tuple[str, CookieOptions]] = {}

    def get(self, name: str) -> Optional[str]:
        return self._jar.get(name)

    def set(self, name: str, value: str, options: Optional[CookieOptions] = None) -> None:
        options = options or CookieOptions()
        self._jar[name] = value
        self._sync_request()

        # Rebuilt on every write so the response side never lags the request side
        writes = dict(self._writes)
        writes.pop(name, None)
        writes[name] = (value, options)
        self._writes = writes

        if self.response is not None:
            _write_cookie(self.response, name, value, options)

    def remove(self, name: str, options: Optional[CookieOptions] = None) -> None:
        options = options or CookieOptions()
        self.set(
            name,
            "",
            CookieOptions(
                path=options.path,
                max_age=0,
                httponly=options.httponly,
                secure=options.secure,
                samesite=options.samesite,
            ),
        )

    @property
    def writes(self) -> List[Tuple[str, str, CookieOptions]]:
        return [(name, value, options) for name, (value, options) in self._writes.items()]

    def apply(self, response: Response) -> Response:
        """Apply every recorded write to ``response`` and return it."""
        for name, value, options in self.writes:
            _write_cookie(response, name, value, options)
        return response

    def _sync_request(self) -> None:
        header = "; ".join(f"{name}={value}" for name, value in self._jar.items())
        headers = [(k, v) for k, v in self.request.scope["headers"] if k != b"cookie"]
        if header:
            headers.append((b"cookie", header.encode("latin-1")))
        self.request.scope["headers"] = headers


def _write_cookie(response: Response, name: str, value: str, options: CookieOptions) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=options.max_age,
        path=options.path,
        secure=options.secure,
        httponly=options.httponly,
        samesite=options.samesite,
    )
