"""Map domain exceptions to ``{"error": ...}`` responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.bookmark_manager import (
    BookmarkError,
    BookmarkNotFoundError,
    BookmarkValidationError,
    UnauthorizedError,
)
from ..core.supabase_client import UpstreamError

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    UnauthorizedError: 401,
    BookmarkValidationError: 400,
    BookmarkNotFoundError: 404,
}

UPSTREAM_MESSAGE = "Upstream service request failed"


def error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    """Build an error body, keeping any session cookie writes made so far."""
    response = JSONResponse(status_code=status_code, content={"error": message})
    bridge = getattr(request.state, "cookie_bridge", None)
    if bridge is not None:
        bridge.apply(response)
    return response


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookmarkError)
    async def bookmark_error_handler(request: Request, exc: BookmarkError) -> JSONResponse:
        status_code = STATUS_BY_ERROR.get(type(exc), 400)
        return error_response(request, status_code, exc.message)

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
        # Upstream text stays in the log; clients get a fixed message
        logger.warning(
            f"Upstream failure on {request.method} {request.url.path}: "
            f"{exc.message} (status={exc.status_code}, code={exc.code})"
        )
        return error_response(request, 502, UPSTREAM_MESSAGE)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug(f"Rejected request body on {request.url.path}: {exc.errors()}")
        return error_response(request, 400, "Invalid request body")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return error_response(request, exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
