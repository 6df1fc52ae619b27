"""
Health Check Routes
"""
import logging
from fastapi import APIRouter, Request

from saasync import __version__
from saasync.models.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Liveness plus what was loaded at startup."""
    sync_config = getattr(request.app.state, "sync_config", None)
    registry = getattr(request.app.state, "connectors", None)
    return HealthResponse(
        status="healthy",
        version=__version__,
        apps=len(sync_config.apps) if sync_config else 0,
        connectors=registry.names() if registry else [],
    )


@router.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "SaaSync",
        "version": __version__,
        "description": "Change data capture for SaaS providers: webhooks and pull syncs into one canonical store",
        "endpoints": {
            "health": "/health",
            "webhook": "/webhook/{app_key}",
            "sync": "/sync",
            "jobs": "/sync/jobs/{job_id}",
            "worker": "/worker",
        }
    }
