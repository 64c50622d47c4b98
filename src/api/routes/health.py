"""Health check routes."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from core.config import get_settings
from core.db import validate_database
from core.logging_config import get_logger
from core.utils import utcnow

router = APIRouter()
LOGGER = get_logger(__name__)
SETTINGS = get_settings()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Basic health check - always returns OK."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "environment": SETTINGS.environment,
    }


@router.get("/health/detailed")
async def detailed_health_check() -> Dict[str, Any]:
    """Database tables and optional integrations."""
    db_status = validate_database()
    status = "healthy" if db_status["status"] == "ok" else "unhealthy"
    if status != "healthy":
        LOGGER.warning(f"Detailed health check unhealthy: {db_status['errors'] or db_status['tables_missing']}")
    return {
        "status": status,
        "timestamp": utcnow().isoformat(),
        "checks": {
            "database": {
                "status": db_status["status"],
                "tables_missing": db_status["tables_missing"],
                "errors": db_status["errors"],
            },
            "google_maps": {"configured": SETTINGS.is_google_enabled()},
            "recorder_considerations": {"enabled": SETTINGS.enable_recorder_considerations},
        },
        "enabled_services": SETTINGS.get_enabled_services(),
    }
