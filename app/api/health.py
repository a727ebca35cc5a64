"""
Health check and readiness probe endpoints.
Provides liveness and readiness checks for orchestrators and monitoring systems.
"""
import logging
import os
from typing import Dict, Any
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.dependencies import get_db
from services.minio_client import get_minio_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

SERVICE_NAME = "Chatline API"
SERVICE_VERSION = "1.0.0"


def check_database(db: Session) -> Dict[str, Any]:
    """
    Check database connectivity.

    Returns:
        Status dict with healthy=True/False and details
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"healthy": True, "message": "Database connection OK"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"healthy": False, "message": f"Database connection failed: {str(e)}"}


def check_object_storage() -> Dict[str, Any]:
    """
    Check MinIO connectivity and that the image bucket exists.

    Returns:
        Status dict with healthy=True/False and details
    """
    try:
        if get_minio_client().ping():
            return {"healthy": True, "message": "Object storage OK"}
        return {"healthy": False, "message": "Image bucket is missing"}
    except Exception as e:
        logger.error(f"Object storage health check failed: {e}")
        return {"healthy": False, "message": f"Object storage connection failed: {str(e)}"}


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    """
    Liveness probe endpoint.

    Returns basic service status without checking dependencies, plus the
    size of the real-time layer.

    Example Response:
        {
            "status": "healthy",
            "service": "Chatline API",
            "version": "1.0.0",
            "realtime": {"connections": 3, "topics": 2}
        }
    """
    gateway = request.app.state.gateway
    event_bus = request.app.state.event_bus
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "realtime": {
            "connections": gateway.get_connection_count(),
            "topics": event_bus.topic_count()
        }
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness probe endpoint.

    Checks the database and object storage. Returns 200 only if both are
    healthy, 503 otherwise.

    Example Response (degraded):
        {
            "status": "not_ready",
            "checks": {
                "database": {"healthy": true, "message": "Database connection OK"},
                "object_storage": {"healthy": false, "message": "Object storage connection failed: ..."}
            }
        }
    """
    checks = {
        "database": check_database(db),
        "object_storage": check_object_storage()
    }

    if all(check["healthy"] for check in checks.values()):
        return {"status": "ready", "checks": checks}

    unhealthy_services = [service for service, check in checks.items() if not check["healthy"]]
    logger.warning(f"Readiness check failed for services: {', '.join(unhealthy_services)}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "checks": checks}
    )
