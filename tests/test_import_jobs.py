"""Tests for bulk PIN import jobs."""
from __future__ import annotations

from typing import Dict, List, Tuple

import pytest
from sqlalchemy.exc import OperationalError

from core.config import Settings
from core.exceptions import ImportFileError, JobNotFoundError, SourceFetchError
from core.models import ImportPinStatus
from core.types import PropertyIdentifier, SourceKind, SourceRecord
from parsers.clerk import ClerkPayload
from services.import_jobs import ImportJobService, decode_upload, extract_pins_from_text
from services.property_cache import PropertyCacheService

PIN_OK = "01-01-120-006-0000"
PIN_PARTIAL = "16-10-421-053-0000"
PIN_DEAD = "20-20-200-020-0000"


class StubPropertyService:
    """Scripted ``refresh`` outcomes keyed by (pin, source)."""

    def __init__(self, cache: PropertyCacheService):
        self.cache = cache
        self.outcomes: Dict[Tuple[str, SourceKind], object] = {}
        self.calls: List[Tuple[str, SourceKind]] = []

    async def refresh(self, pin: PropertyIdentifier, kind: SourceKind) -> SourceRecord:
        self.calls.append((pin.value, kind))
        outcome = self.outcomes.get((pin.value, kind))
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, SourceRecord):
            return outcome
        return SourceRecord(kind=kind, pin=pin, payload=ClerkPayload(data_as_of="03/01/2026"))


@pytest.fixture
def import_settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        IMPORT_BATCH_SIZE=2,
        IMPORT_BATCH_DELAY_SECONDS=1.5,
    )


@pytest.fixture
def stub(property_cache) -> StubPropertyService:
    return StubPropertyService(property_cache)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def jobs(stub, session_factory, import_settings, sleeps) -> ImportJobService:
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return ImportJobService(
        property_service=stub,
        session_factory=session_factory,
        settings=import_settings,
        sleep=record_sleep,
    )


class TestExtractPins:
    def test_csv_with_header_and_quotes(self):
        text = 'pin,address\n"01-01-120-006-0000",123 MAIN ST\n16104210530000,456 OAK\n'
        assert extract_pins_from_text(text) == ["01-01-120-006-0000", "16-10-421-053-0000"]

    def test_duplicates_and_formats_collapse(self):
        text = "16-10-421-053-0000\r\n16104210530000\n16 10 421 053 0000\n"
        assert extract_pins_from_text(text) == ["16-10-421-053-0000"]

    def test_tabs_semicolons_and_pipes(self):
        text = "a\t01-01-120-006-0000;b|20-20-200-020-0000"
        assert extract_pins_from_text(text) == ["01-01-120-006-0000", "20-20-200-020-0000"]

    def test_wrong_lengths_ignored(self):
        assert extract_pins_from_text("123-45\n0101120006000\n010112000600001\n") == []


class TestDecodeUpload:
    def test_empty(self):
        with pytest.raises(ImportFileError) as exc_info:
            decode_upload(b"", 1024)
        assert exc_info.value.message == "No file uploaded"

    def test_oversized(self):
        limit = 1024 * 1024
        with pytest.raises(ImportFileError) as exc_info:
            decode_upload(b"0" * (limit + 1), limit)
        assert exc_info.value.message == "File exceeds 1MB limit"

    def test_no_pins(self):
        with pytest.raises(ImportFileError) as exc_info:
            decode_upload(b"name,address\nfoo,bar\n", 1024)
        assert exc_info.value.message == "No valid PINs found in file"
        assert exc_info.value.status_code == 400

    def test_undecodable_bytes_are_tolerated(self):
        assert decode_upload(b"\xff\xfe01-01-120-006-0000\n", 1024) == ["01-01-120-006-0000"]


class TestRunJob:
    async def test_statuses_and_counts(self, jobs, stub, sleeps, property_cache):
        stub.outcomes[(PIN_PARTIAL, SourceKind.CLERK)] = SourceFetchError("Clerk timed out")
        for kind in SourceKind:
            stub.outcomes[(PIN_DEAD, kind)] = SourceFetchError(f"{kind.value} down")

        created = jobs.create_job("pins.csv", [PIN_OK, PIN_PARTIAL, PIN_DEAD])
        assert created["status"] == "processing"
        assert created["samplePins"] == [PIN_OK, PIN_PARTIAL, PIN_DEAD]

        await jobs.run_job(created["jobId"])

        job = jobs.get_job(created["jobId"])
        assert job["status"] == "complete"
        assert job["completedPins"] == 2
        assert job["failedPins"] == 1
        assert job["pinCounts"] == {"complete": 2, "error": 1}

        pins = {p["pin"]: p for p in job["pins"]}
        assert pins[PIN_OK]["error"] is None
        assert pins[PIN_PARTIAL]["status"] == "complete"
        assert pins[PIN_PARTIAL]["error"] == "clerk: Clerk timed out"
        assert pins[PIN_DEAD]["status"] == "error"
        assert pins[PIN_DEAD]["error"].count(";") == 3
        assert pins[PIN_DEAD]["fetchedAt"] is not None

        # A pause only follows the first, full batch
        assert sleeps == [1.5]
        assert len(stub.calls) == 12

        failed = property_cache.get_cached(PropertyIdentifier.parse(PIN_PARTIAL), SourceKind.CLERK)
        assert failed.error == "Clerk timed out"
        assert failed.error_code == "FETCH_ERROR"

    async def test_payloadless_record_counts_as_error(self, jobs, stub):
        pin = PropertyIdentifier.parse(PIN_OK)
        stub.outcomes[(PIN_OK, SourceKind.RECORDER)] = SourceRecord.failure(
            SourceKind.RECORDER, pin, "No recorded documents found", "NOT_FOUND"
        )
        created = jobs.create_job(None, [PIN_OK])

        await jobs.run_job(created["jobId"])

        pin_row = jobs.get_job(created["jobId"])["pins"][0]
        assert pin_row["status"] == "complete"
        assert pin_row["error"] == "recorder: No recorded documents found"

    async def test_processing_order_is_submission_order(self, jobs, stub):
        pins = [PIN_DEAD, PIN_OK, PIN_PARTIAL]
        created = jobs.create_job(None, pins)

        await jobs.run_job(created["jobId"])

        first_seen = []
        for value, _ in stub.calls:
            if value not in first_seen:
                first_seen.append(value)
        assert first_seen == pins

    async def test_database_failure_marks_job_error(self, jobs, monkeypatch):
        created = jobs.create_job(None, [PIN_OK])

        def broken(job_id):
            raise OperationalError("UPDATE import_jobs", {}, Exception("database is locked"))

        monkeypatch.setattr(jobs, "_update_counts", broken)
        await jobs.run_job(created["jobId"])

        assert jobs.get_job(created["jobId"])["status"] == "error"
        assert not jobs.is_active(created["jobId"])

    async def test_database_failure_for_one_pin_fails_only_that_pin(self, jobs, stub, monkeypatch):
        created = jobs.create_job(None, [PIN_OK, PIN_PARTIAL])
        real_set_pin = jobs._set_pin

        def flaky_set_pin(job_id, pin, status, error=None):
            if pin == PIN_PARTIAL and status is ImportPinStatus.FETCHING:
                raise OperationalError("UPDATE import_pins", {}, Exception("database is locked"))
            return real_set_pin(job_id, pin, status, error)

        monkeypatch.setattr(jobs, "_set_pin", flaky_set_pin)
        await jobs.run_job(created["jobId"])

        job = jobs.get_job(created["jobId"])
        assert job["status"] == "complete"
        assert job["pinCounts"] == {"complete": 1, "error": 1}
        pins = {p["pin"]: p for p in job["pins"]}
        assert pins[PIN_OK]["status"] == "complete"
        assert pins[PIN_PARTIAL]["status"] == "error"
        assert "database is locked" in pins[PIN_PARTIAL]["error"]
        assert {value for value, _ in stub.calls} == {PIN_OK}


class TestJobQueries:
    def test_pagination(self, jobs):
        created = jobs.create_job(None, [PIN_OK, PIN_PARTIAL, PIN_DEAD])

        page = jobs.get_job(created["jobId"], limit=1, offset=1)

        assert [p["pin"] for p in page["pins"]] == [PIN_PARTIAL]
        assert page["limit"] == 1
        assert page["offset"] == 1
        assert page["pinCounts"] == {"pending": 3}

    def test_unknown_job(self, jobs):
        with pytest.raises(JobNotFoundError):
            jobs.get_job("missing")

    def test_delete_and_list(self, jobs):
        first = jobs.create_job("a.csv", [PIN_OK])
        jobs.create_job("b.csv", [PIN_PARTIAL])

        jobs.delete_job(first["jobId"])

        assert [j["filename"] for j in jobs.list_jobs()] == ["b.csv"]
        assert jobs.counts() == {"totalJobs": 1, "activeJobs": 0}
        with pytest.raises(JobNotFoundError):
            jobs.delete_job(first["jobId"])

    def test_upload_creates_job(self, jobs):
        created = jobs.create_job_from_upload("pins.txt", b"01-01-120-006-0000\n16104210530000\n")
        assert created["totalPins"] == 2
        assert created["filename"] == "pins.txt"


class TestRecovery:
    async def test_fetching_pins_reset_and_resumed(self, jobs, stub):
        created = jobs.create_job(None, [PIN_OK, PIN_PARTIAL])
        job_id = created["jobId"]
        jobs._set_pin(job_id, PIN_OK, ImportPinStatus.COMPLETE)
        jobs._set_pin(job_id, PIN_PARTIAL, ImportPinStatus.FETCHING)

        assert jobs.recover_stuck_jobs() == [job_id]
        statuses = {p["pin"]: p["status"] for p in jobs.get_job(job_id)["pins"]}
        assert statuses == {PIN_OK: "complete", PIN_PARTIAL: "pending"}

        await jobs.run_job(job_id)

        assert {value for value, _ in stub.calls} == {PIN_PARTIAL}
        assert jobs.get_job(job_id)["status"] == "complete"

    def test_finished_jobs_not_recovered(self, jobs, session_factory):
        from core.models import ImportJob

        created = jobs.create_job(None, [PIN_OK])
        with session_factory() as session:
            session.get(ImportJob, created["jobId"]).status = "complete"

        assert jobs.recover_stuck_jobs() == []
