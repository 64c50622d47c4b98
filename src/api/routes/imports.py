"""Bulk PIN import routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Query, UploadFile
from pydantic import BaseModel, Field

from api.deps import import_service
from core.exceptions import ImportFileError
from core.logging_config import get_logger
from services.import_jobs import ImportJobService, extract_pins_from_text

router = APIRouter()
LOGGER = get_logger(__name__)


class PinListRequest(BaseModel):
    """PINs submitted directly as JSON."""

    pins: List[str] = Field(..., min_length=1)
    filename: Optional[str] = None


@router.post("/upload")
async def upload_file(
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    service: ImportJobService = Depends(import_service),
) -> Dict[str, Any]:
    """Start an import job from a CSV, TSV or text file of PINs."""
    if file is None:
        raise ImportFileError("No file uploaded")
    content = await file.read()
    job = service.create_job_from_upload(file.filename, content)
    background_tasks.add_task(service.run_job, job["jobId"])
    return {"success": True, **job}


@router.post("/pins")
async def submit_pins(
    request: PinListRequest,
    background_tasks: BackgroundTasks,
    service: ImportJobService = Depends(import_service),
) -> Dict[str, Any]:
    pins = extract_pins_from_text("\n".join(request.pins))
    if not pins:
        raise ImportFileError("No valid PINs found")
    job = service.create_job(request.filename, pins)
    background_tasks.add_task(service.run_job, job["jobId"])
    return {"success": True, **job}


@router.get("/jobs")
async def list_jobs(
    limit: int = Query(50, ge=1, le=500),
    service: ImportJobService = Depends(import_service),
) -> Dict[str, Any]:
    return {"success": True, "jobs": service.list_jobs(limit)}


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    service: ImportJobService = Depends(import_service),
) -> Dict[str, Any]:
    return {"success": True, "job": service.get_job(job_id, limit=limit, offset=offset)}


@router.delete("/jobs/{job_id}")
async def delete_job(
    job_id: str,
    service: ImportJobService = Depends(import_service),
) -> Dict[str, Any]:
    service.delete_job(job_id)
    return {"success": True, "jobId": job_id}
