"""Request-scoped dependencies and the application service container."""

from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request, Response
from supabase import AsyncClient

from ..core.bookmark_manager import BookmarkManager, UnauthorizedError
from ..core.change_feed import ChangeFeed
from ..core.supabase_client import NotConfiguredError, SupabaseClientFactory, get_user
from ..models.config import AppConfig, EnvSettings
from ..models.session import AuthUser
from .cookies import CookieBridge


@dataclass
class AppServices:
    """Everything a request needs, built once per application."""

    config: AppConfig
    env_settings: EnvSettings
    clients: SupabaseClientFactory
    change_feed: ChangeFeed = field(default_factory=ChangeFeed)


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_config(services: AppServices = Depends(get_services)) -> AppConfig:
    return services.config


def get_supabase(
    request: Request,
    response: Response,
    services: AppServices = Depends(get_services),
) -> Optional[AsyncClient]:
    """Server-context client bound to this request's cookies.

    None when Supabase is not configured. The bridge is kept on
    ``request.state`` so responses built outside the normal return path
    (errors, streams) still carry its cookie writes.
    """
    bridge = CookieBridge(request, response)
    request.state.cookie_bridge = bridge
    if not services.clients.is_configured:
        return None
    return services.clients.server_client(bridge)


async def get_current_user(
    supabase: Optional[AsyncClient] = Depends(get_supabase),
) -> AuthUser:
    """Re-derive the session user server-side; never trust client identity."""
    user = await get_user(supabase) if supabase is not None else None
    if user is None:
        raise UnauthorizedError("Unauthorized")
    return user


def get_bookmark_manager(
    supabase: Optional[AsyncClient] = Depends(get_supabase),
    services: AppServices = Depends(get_services),
) -> BookmarkManager:
    if supabase is None:
        raise NotConfiguredError("Supabase URL or anon key is not configured")
    return BookmarkManager(supabase, services.change_feed)
