"""Session gate: redirects based on the presence of a signed-in user."""

import logging
from enum import Enum

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ..core.supabase_client import get_user
from ..models.config import AppConfig
from .cookies import CookieBridge

logger = logging.getLogger(__name__)


class GateDecision(str, Enum):
    ALLOW = "allow"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    REDIRECT_TO_PROTECTED = "redirect_to_protected"


def is_protected(path: str, config: AppConfig) -> bool:
    """True for the protected root and anything beneath it."""
    root = config.protected_path
    return path == root or path.startswith(root.rstrip("/") + "/")


def is_gated(path: str, config: AppConfig) -> bool:
    """True for paths the gate runs on; every other path bypasses it."""
    return is_protected(path, config) or path == config.login_path


def decide(path: str, authenticated: bool, config: AppConfig) -> GateDecision:
    if not authenticated and is_protected(path, config):
        return GateDecision.REDIRECT_TO_LOGIN
    if authenticated and path == config.login_path:
        return GateDecision.REDIRECT_TO_PROTECTED
    return GateDecision.ALLOW


class SessionGateMiddleware(BaseHTTPMiddleware):
    """Resolve the session for gated paths and allow or redirect.

    Session cookies refreshed while resolving the user are written to both
    the in-flight request and the outgoing response, including redirects.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        services = request.app.state.services
        config = services.config
        path = request.url.path

        if not is_gated(path, config):
            return await call_next(request)

        cookies = CookieBridge(request)
        user = None
        if services.clients.is_configured:
            user = await get_user(services.clients.server_client(cookies))

        decision = decide(path, user is not None, config)

        if decision is GateDecision.REDIRECT_TO_LOGIN:
            logger.debug(f"No session for {path}, redirecting to {config.login_path}")
            response: Response = RedirectResponse(
                str(request.url.replace(path=config.login_path, query="")),
                status_code=307,
            )
        elif decision is GateDecision.REDIRECT_TO_PROTECTED:
            response = RedirectResponse(
                str(request.url.replace(path=config.protected_path, query="")),
                status_code=307,
            )
        else:
            request.state.user = user
            response = await call_next(request)

        return cookies.apply(response)
