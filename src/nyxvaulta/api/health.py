"""Health check endpoint."""

from fastapi import APIRouter, Depends

from . import __version__
from .dependencies import AppServices, get_services

router = APIRouter()


@router.get("/health")
async def health_check(services: AppServices = Depends(get_services)):
    """Health check endpoint.

    ``configured`` reports whether the Supabase URL and anon key are set;
    without them every session lookup fails closed.
    """
    configured = services.clients.is_configured
    return {
        "status": "healthy" if configured else "degraded",
        "version": __version__,
        "configured": configured,
        "subscribers": services.change_feed.subscriber_count,
    }
