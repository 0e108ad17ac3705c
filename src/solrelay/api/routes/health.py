"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from solrelay import __version__
from solrelay.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "solrelay",
        "version": __version__,
        "environment": settings.environment,
    }


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Detailed health check with configuration info."""
    settings = get_settings()
    relay = getattr(request.app.state, "relay", None)
    return {
        "status": "healthy",
        "service": "solrelay",
        "version": __version__,
        "active_wallets": relay.wallets.active_count if relay else 0,
        "aggregator": relay.aggregator.name if relay else None,
        "config": settings.get_safe_dict(),
    }
