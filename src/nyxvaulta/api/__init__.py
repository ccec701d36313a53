"""FastAPI application and routes."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from ..config import ConfigError, ConfigManager
from ..core.change_feed import ChangeFeed
from ..core.supabase_client import SupabaseClientFactory
from ..models.config import AppConfig
from .dependencies import AppServices
from .errors import register_error_handlers
from .session_gate import SessionGateMiddleware

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def build_services(config_manager: Optional[ConfigManager] = None) -> AppServices:
    """Load configuration and assemble the per-application services."""
    config_manager = config_manager or ConfigManager()
    try:
        app_config = config_manager.load_app_config()
    except ConfigError as e:
        logger.warning(f"{e} Falling back to default settings.")
        app_config = AppConfig()

    env_settings = config_manager.load_env_settings()
    if not env_settings.is_configured:
        logger.warning("SUPABASE_URL or SUPABASE_ANON_KEY is not set; sessions will fail closed")

    return AppServices(
        config=app_config,
        env_settings=env_settings,
        clients=SupabaseClientFactory(env_settings, app_config),
        change_feed=ChangeFeed(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: AppServices = app.state.services
    logger.info("Starting NyxVaulta API...")
    logger.info(
        f"Protected area {services.config.protected_path}, "
        f"sign-in page {services.config.login_path}"
    )

    yield

    await services.change_feed.drain()
    await services.clients.aclose()
    logger.info("Shutting down NyxVaulta API...")


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Create the application around ``services`` (loaded from config if None)."""
    services = services or build_services()

    app = FastAPI(
        title="NyxVaulta API",
        description="Personal bookmark manager with live cross-session sync",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # Added last so it runs first: the gate sees CORS-handled requests
    app.add_middleware(SessionGateMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=services.config.allowed_origins,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    from .auth import router as auth_router
    from .bookmarks import router as bookmarks_router
    from .dashboard import router as dashboard_router
    from .health import router as health_router

    app.include_router(bookmarks_router, prefix="/api", tags=["bookmarks"])
    app.include_router(health_router, prefix="/api", tags=["health"])
    app.include_router(auth_router, tags=["auth"])
    app.include_router(dashboard_router, tags=["dashboard"])

    @app.get("/")
    async def root(request: Request, code: Optional[str] = Query(None)):
        """Root endpoint. An OAuth code landing here is forwarded to the callback."""
        if code:
            callback = request.url.replace(path="/auth/callback")
            return RedirectResponse(str(callback), status_code=303)
        return {
            "name": "NyxVaulta API",
            "version": __version__,
            "docs": "/docs",
            "health": "/api/health",
            "app": services.config.protected_path,
        }

    return app


app = create_app()
