"""Bulk PIN import: parse an uploaded file, then refresh every PIN in batches."""
from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from core.config import Settings, get_settings
from core.db import get_session_factory
from core.exceptions import BackendUnavailableError, ImportFileError, JobNotFoundError
from core.logging_config import get_context_logger, get_logger
from core.models import ImportJob, ImportJobStatus, ImportPin, ImportPinStatus
from core.types import PIN_PATTERN, PropertyIdentifier, SourceKind, format_dashed
from core.utils import utcnow
from services.aggregator import CachedPropertyService, get_property_service
from services.property_cache import SessionFactory

LOGGER = get_logger(__name__)

_LINE_SPLIT_RE = re.compile(r"[\r\n]+")
_FIELD_SPLIT_RE = re.compile(r"[,\t;|]")

MAX_JOB_PAGE = 500
DEFAULT_JOB_PAGE = 100

# Job ids currently running in this process, shared by every service instance
_ACTIVE_JOBS: Set[str] = set()


def extract_pins_from_text(text: str) -> List[str]:
    """
    Every PIN found in CSV/TSV/plain text, dashed, deduplicated in order.

    Any field that is a dashed PIN, 14 bare digits, or 14 digits once the
    punctuation is dropped counts.
    """
    seen: Set[str] = set()
    pins: List[str] = []
    for line in _LINE_SPLIT_RE.split(text):
        for raw in _FIELD_SPLIT_RE.split(line):
            value = raw.strip().strip("\"'").strip()
            if not value:
                continue
            if PIN_PATTERN.match(value):
                pin = value
            else:
                digits = re.sub(r"\D", "", value)
                if len(digits) != 14:
                    continue
                pin = format_dashed(digits)
            if pin not in seen:
                seen.add(pin)
                pins.append(pin)
    return pins


def decode_upload(content: bytes, max_bytes: int) -> List[str]:
    """
    PINs from uploaded file bytes.

    Raises:
        ImportFileError: Empty, oversized or PIN-less upload.
    """
    if not content:
        raise ImportFileError("No file uploaded")
    if len(content) > max_bytes:
        raise ImportFileError(f"File exceeds {max_bytes // (1024 * 1024)}MB limit")
    pins = extract_pins_from_text(content.decode("utf-8", errors="replace"))
    if not pins:
        raise ImportFileError("No valid PINs found in file")
    return pins


class ImportJobService:
    """
    Create, run and inspect import jobs.

    A job refreshes all four sources for each PIN, ``import_batch_size`` PINs
    at a time with a pause after each full batch, in submission order.
    """

    def __init__(
        self,
        property_service: Optional[CachedPropertyService] = None,
        session_factory: Optional[SessionFactory] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._property_service = property_service
        self.session_factory = session_factory or get_session_factory()
        self.settings = settings or get_settings()
        self.sleep = sleep

    @property
    def property_service(self) -> CachedPropertyService:
        if self._property_service is None:
            self._property_service = get_property_service()
        return self._property_service

    # -------------------------------------------------------------------------
    # Job lifecycle
    # -------------------------------------------------------------------------

    def create_job(self, filename: Optional[str], pins: List[str]) -> Dict[str, Any]:
        with self.session_factory() as session:
            job = ImportJob(
                filename=filename,
                total_pins=len(pins),
                status=ImportJobStatus.PROCESSING.value,
            )
            job.pins = [ImportPin(pin=pin) for pin in pins]
            session.add(job)
            session.flush()
            job_id = job.id
        LOGGER.info(
            f"Created import job {job_id} with {len(pins)} PINs",
            extra={"extra_data": {"job_id": job_id, "filename": filename}},
        )
        return {
            "jobId": job_id,
            "filename": filename,
            "totalPins": len(pins),
            "samplePins": pins[:5],
            "status": ImportJobStatus.PROCESSING.value,
        }

    def create_job_from_upload(self, filename: Optional[str], content: bytes) -> Dict[str, Any]:
        pins = decode_upload(content, self.settings.import_max_file_bytes)
        return self.create_job(filename, pins)

    def is_active(self, job_id: str) -> bool:
        return job_id in _ACTIVE_JOBS

    async def run_job(self, job_id: str) -> None:
        """Process every pending PIN of a job. A job already running here is skipped."""
        if job_id in _ACTIVE_JOBS:
            LOGGER.warning(f"Import job {job_id} is already running")
            return
        _ACTIVE_JOBS.add(job_id)
        logger = get_context_logger(__name__, job_id=job_id)
        try:
            pins = self._pending_pins(job_id)
            logger.info(f"Import job {job_id} processing {len(pins)} PINs")
            batch_size = self.settings.import_batch_size
            for start in range(0, len(pins), batch_size):
                batch = pins[start:start + batch_size]
                await asyncio.gather(*(self._process_pin(job_id, pin) for pin in batch))
                self._update_counts(job_id)
                if len(batch) == batch_size and start + batch_size < len(pins):
                    await self.sleep(self.settings.import_batch_delay_seconds)
            self._set_status(job_id, ImportJobStatus.COMPLETE)
            logger.info(f"Import job {job_id} complete")
        except (SQLAlchemyError, BackendUnavailableError) as e:
            logger.error(f"Import job {job_id} failed: {e}")
            self._set_status(job_id, ImportJobStatus.ERROR)
        finally:
            _ACTIVE_JOBS.discard(job_id)

    async def _process_pin(self, job_id: str, pin_value: str) -> None:
        try:
            await self._refresh_pin(job_id, pin_value)
        except (SQLAlchemyError, BackendUnavailableError) as e:
            message = getattr(e, "message", None) or str(e)
            LOGGER.error(f"Import job {job_id} could not process {pin_value}: {message}")
            try:
                self._set_pin(job_id, pin_value, ImportPinStatus.ERROR, message)
            except SQLAlchemyError:
                LOGGER.error(f"Could not mark {pin_value} failed in import job {job_id}")
                raise

    async def _refresh_pin(self, job_id: str, pin_value: str) -> None:
        self._set_pin(job_id, pin_value, ImportPinStatus.FETCHING)
        pin = PropertyIdentifier.normalize(pin_value)
        errors: List[str] = []

        async def refresh(kind: SourceKind) -> None:
            try:
                record = await self.property_service.refresh(pin, kind)
            except Exception as e:
                message = getattr(e, "message", None) or str(e)
                errors.append(f"{kind.value}: {message}")
                try:
                    self.property_service.cache.upsert_cached(
                        pin, kind, None, message, getattr(e, "code", "FETCH_ERROR")
                    )
                except BackendUnavailableError:
                    LOGGER.error(f"Could not record {kind.value} failure for {pin}")
                return
            if record.payload is None:
                errors.append(f"{kind.value}: {record.error}")

        await asyncio.gather(*(refresh(kind) for kind in SourceKind))

        if not errors:
            self._set_pin(job_id, pin_value, ImportPinStatus.COMPLETE)
        elif len(errors) < len(SourceKind):
            self._set_pin(job_id, pin_value, ImportPinStatus.COMPLETE, "; ".join(errors))
        else:
            self._set_pin(job_id, pin_value, ImportPinStatus.ERROR, "; ".join(errors))

    # -------------------------------------------------------------------------
    # Persistence helpers
    # -------------------------------------------------------------------------

    def _pending_pins(self, job_id: str) -> List[str]:
        with self.session_factory() as session:
            return list(
                session.execute(
                    select(ImportPin.pin)
                    .where(
                        ImportPin.job_id == job_id,
                        ImportPin.status != ImportPinStatus.COMPLETE.value,
                        ImportPin.status != ImportPinStatus.ERROR.value,
                    )
                    .order_by(ImportPin.id)
                ).scalars()
            )

    def _set_pin(
        self,
        job_id: str,
        pin: str,
        status: ImportPinStatus,
        error: Optional[str] = None,
    ) -> None:
        with self.session_factory() as session:
            row = session.execute(
                select(ImportPin).where(ImportPin.job_id == job_id, ImportPin.pin == pin)
            ).scalar_one()
            row.status = status.value
            row.error = error
            if status in (ImportPinStatus.COMPLETE, ImportPinStatus.ERROR):
                row.fetched_at = utcnow()

    def _update_counts(self, job_id: str) -> None:
        with self.session_factory() as session:
            counts = self._pin_counts(session, job_id)
            job = session.get(ImportJob, job_id)
            job.completed_pins = counts.get(ImportPinStatus.COMPLETE.value, 0)
            job.failed_pins = counts.get(ImportPinStatus.ERROR.value, 0)

    def _set_status(self, job_id: str, status: ImportJobStatus) -> None:
        with self.session_factory() as session:
            job = session.get(ImportJob, job_id)
            if job is not None:
                job.status = status.value

    @staticmethod
    def _pin_counts(session, job_id: str) -> Dict[str, int]:
        rows = session.execute(
            select(ImportPin.status, func.count(ImportPin.id))
            .where(ImportPin.job_id == job_id)
            .group_by(ImportPin.status)
        ).all()
        return {status: count for status, count in rows}

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_jobs(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self.session_factory() as session:
            jobs = session.execute(
                select(ImportJob).order_by(ImportJob.created_at.desc()).limit(limit)
            ).scalars().all()
            return [job.to_dict() for job in jobs]

    def get_job(self, job_id: str, limit: Optional[int] = None, offset: int = 0) -> Dict[str, Any]:
        """
        Job summary, per-status counts and one page of its PINs.

        Raises:
            JobNotFoundError: Unknown job id.
        """
        limit = min(limit or DEFAULT_JOB_PAGE, MAX_JOB_PAGE)
        with self.session_factory() as session:
            job = session.get(ImportJob, job_id)
            if job is None:
                raise JobNotFoundError(f"Import job {job_id} not found")
            pins = session.execute(
                select(ImportPin)
                .where(ImportPin.job_id == job_id)
                .order_by(ImportPin.id)
                .limit(limit)
                .offset(max(offset, 0))
            ).scalars().all()
            return {
                **job.to_dict(),
                "pinCounts": self._pin_counts(session, job_id),
                "pins": [pin.to_dict() for pin in pins],
                "limit": limit,
                "offset": max(offset, 0),
            }

    def delete_job(self, job_id: str) -> None:
        with self.session_factory() as session:
            job = session.get(ImportJob, job_id)
            if job is None:
                raise JobNotFoundError(f"Import job {job_id} not found")
            session.delete(job)

    def counts(self) -> Dict[str, int]:
        with self.session_factory() as session:
            total = session.execute(select(func.count(ImportJob.id))).scalar_one()
        return {"totalJobs": total, "activeJobs": len(_ACTIVE_JOBS)}

    def recover_stuck_jobs(self) -> List[str]:
        """
        Reset jobs a previous process left mid-run.

        PINs caught in ``fetching`` go back to ``pending``; the returned job
        ids can be handed to ``run_job`` again.
        """
        with self.session_factory() as session:
            job_ids = [
                job_id
                for job_id in session.execute(
                    select(ImportJob.id).where(ImportJob.status == ImportJobStatus.PROCESSING.value)
                ).scalars()
                if job_id not in _ACTIVE_JOBS
            ]
            for job_id in job_ids:
                for pin in session.execute(
                    select(ImportPin).where(
                        ImportPin.job_id == job_id,
                        ImportPin.status == ImportPinStatus.FETCHING.value,
                    )
                ).scalars():
                    pin.status = ImportPinStatus.PENDING.value
        if job_ids:
            LOGGER.info(f"Recovered {len(job_ids)} interrupted import jobs")
        return job_ids


__all__ = ["ImportJobService", "decode_upload", "extract_pins_from_text"]
