"""Sign-in page and the OAuth sign-in, callback and sign-out routes."""

import html
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from ..core.supabase_client import (
    UpstreamError,
    exchange_code_for_session,
    sign_in_url,
    sign_out as revoke_session,
)
from .cookies import CookieBridge
from .dependencies import AppServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter()

LOGIN_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>NyxVaulta - Sign in</title>
</head>
<body>
  <main>
    <h1>NyxVaulta</h1>
    <p>Your bookmarks, synced across every open tab.</p>
    {error}
    <a href="/auth/signin">Sign in with {provider}</a>
  </main>
</body>
</html>
"""


def _site_url(request: Request, services: AppServices) -> str:
    if services.config.site_url:
        return services.config.site_url.rstrip("/")
    return str(request.base_url).rstrip("/")


@router.get("/login", response_class=HTMLResponse)
async def login_page(
    error: Optional[str] = Query(None),
    services: AppServices = Depends(get_services),
):
    """Sign-in page. Signed-in users never reach it (the gate redirects them)."""
    error_html = f'<p role="alert">{html.escape(error)}</p>' if error else ""
    provider = html.escape(services.config.oauth_provider.capitalize())
    return HTMLResponse(LOGIN_PAGE.format(error=error_html, provider=provider))


@router.get("/auth/signin")
async def sign_in(request: Request, services: AppServices = Depends(get_services)):
    """Start the provider sign-in and send the browser to its authorize URL."""
    cookies = CookieBridge(request)
    redirect_to = f"{_site_url(request, services)}/auth/callback"

    try:
        supabase = services.clients.server_client(cookies)
        authorize_url = await sign_in_url(supabase, services.config.oauth_provider, redirect_to)
    except UpstreamError as e:
        logger.warning(f"Cannot start sign-in: {e}")
        login_url = request.url.replace(
            path=services.config.login_path, query="error=Sign-in+is+unavailable"
        )
        return RedirectResponse(str(login_url), status_code=303)

    return cookies.apply(RedirectResponse(authorize_url, status_code=303))


@router.get("/auth/callback")
async def auth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    services: AppServices = Depends(get_services),
):
    """Exchange the authorization code for a session, then go to the dashboard.

    A failed exchange still lands on the dashboard; without a session the
    gate sends the browser on to the sign-in page.
    """
    cookies = CookieBridge(request)
    if code:
        try:
            supabase = services.clients.server_client(cookies)
            user = await exchange_code_for_session(supabase, code)
            if user is not None:
                logger.info(f"Signed in user {user.id}")
        except UpstreamError as e:
            logger.warning(f"Code exchange failed: {e}")

    dashboard_url = request.url.replace(path=services.config.protected_path, query="")
    return cookies.apply(RedirectResponse(str(dashboard_url), status_code=303))


@router.post("/auth/signout")
async def sign_out(request: Request, services: AppServices = Depends(get_services)):
    """Revoke the session, clear its cookies and return to the sign-in page."""
    cookies = CookieBridge(request)
    if services.clients.is_configured:
        await revoke_session(services.clients.server_client(cookies))

    login_url = request.url.replace(path=services.config.login_path, query="")
    return cookies.apply(RedirectResponse(str(login_url), status_code=303))
