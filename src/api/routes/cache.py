"""Cache inspection routes."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.deps import import_service, property_service
from services.aggregator import CachedPropertyService
from services.import_jobs import ImportJobService

router = APIRouter()


@router.get("/stats")
async def cache_stats(
    service: CachedPropertyService = Depends(property_service),
    imports: ImportJobService = Depends(import_service),
) -> Dict[str, Any]:
    """Persistent cache totals, in-process cache counters and import job totals."""
    return {
        "success": True,
        **imports.counts(),
        **service.cache.stats(),
        "jobs": imports.list_jobs(limit=10),
        "fetchCache": service.sources.fetch_cache.stats(),
    }
