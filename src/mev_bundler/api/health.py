"""Health check API endpoints for monitoring and load balancer integration."""
import logging
from typing import Any, Dict
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response, status

logger = logging.getLogger(__name__)

# Create the FastAPI router
router = APIRouter()


@router.get("/health")
def basic_health_check() -> Dict[str, Any]:
    """Basic health check that returns system status."""
    return {
        "status": "healthy",
        "message": "Service is operational",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/health/detailed")
def detailed_health_check(request: Request) -> Dict[str, Any]:
    """Detailed health check with engine and pool status."""
    engine = request.app.state.engine
    pool_stats = engine.pool.get_stats()
    return {
        "status": "healthy" if engine.is_running else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "engine": {
                "status": "healthy" if engine.is_running else "degraded",
                "message": "Construction loop running" if engine.is_running else "Construction loop stopped"
            },
            "pool": {
                "status": "healthy",
                "message": f"{pool_stats['pending']}/{pool_stats['capacity']} pending opportunities"
            }
        }
    }


@router.get("/health/live")
def liveness_probe() -> Dict[str, Any]:
    """Kubernetes liveness probe."""
    return {
        "status": "alive",
        "message": "Application is responsive"
    }


@router.get("/health/ready")
def readiness_probe(request: Request, response: Response) -> Dict[str, Any]:
    """Kubernetes readiness probe; ready once the construction loop is running."""
    if not request.app.state.engine.is_running:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "message": "Construction engine is not running"
        }
    return {
        "status": "ready",
        "message": "Application is ready to serve traffic"
    }
