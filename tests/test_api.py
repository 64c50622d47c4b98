"""API tests through FastAPI's TestClient with services swapped in."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api import deps
from api.app import create_app
from conftest import RecordingRouter
from core.exceptions import SourceFetchError
from core.types import SourceKind, SourceRecord
from parsers.clerk import ClerkPayload
from services.aggregator import CachedPropertyService
from services.bids import BidService
from services.google_maps import GoogleMapsService
from services.import_jobs import ImportJobService
from services.sources import SourceService
import sample_pages as pages

VALID_PIN = "01-01-120-006-0000"


class ScriptedSources:
    """Clerk succeeds, recorder reports no documents, the rest are unreachable."""

    def __init__(self, fetch_cache):
        self.fetch_cache = fetch_cache
        self.calls = []

    async def fetch_source_data(self, pin, kind):
        self.calls.append(kind)
        if kind is SourceKind.CLERK:
            return SourceRecord(kind=kind, pin=pin, payload=ClerkPayload(data_as_of="03/01/2026"))
        if kind is SourceKind.RECORDER:
            return SourceRecord.failure(kind, pin, "No recorded documents found", "NOT_FOUND")
        raise SourceFetchError(f"{kind.label} timed out during load_search_page")


@pytest.fixture
def sources(fetch_cache) -> ScriptedSources:
    return ScriptedSources(fetch_cache)


@pytest.fixture
def property_service(sources, property_cache) -> CachedPropertyService:
    return CachedPropertyService(sources=sources, cache=property_cache)


@pytest.fixture
def client(property_service, session_factory, fetch_cache, settings):
    app = create_app()
    router = RecordingRouter(pages.ALL_ROUTES)
    raw_sources = SourceService(cache=fetch_cache, transport=router.transport, settings=settings)

    app.dependency_overrides[deps.property_service] = lambda: property_service
    app.dependency_overrides[deps.source_service] = lambda: raw_sources
    app.dependency_overrides[deps.google_service] = lambda: GoogleMapsService(api_key="")
    app.dependency_overrides[deps.bid_service] = lambda: BidService(session_factory=session_factory)
    app.dependency_overrides[deps.import_service] = lambda: ImportJobService(
        property_service=property_service,
        session_factory=session_factory,
        settings=settings,
    )
    # No context manager: the lifespan would initialize the configured database
    return TestClient(app)


class TestPinValidation:
    @pytest.mark.parametrize("path", ["tax-portal-data", "clerk-data", "recorder-data", "cookviewer-data", "property"])
    def test_malformed_pin_is_400(self, client, sources, path):
        response = client.get(f"/api/cook/{path}", params={"pin": "123-45"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid PIN format", "code": "INVALID_PIN"}
        assert sources.calls == []

    def test_missing_pin_is_400(self, client):
        response = client.get("/api/cook/clerk-data")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PIN"


class TestSourceRoutes:
    def test_success_envelope(self, client):
        response = client.get("/api/cook/clerk-data", params={"pin": VALID_PIN})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["data_as_of"] == "03/01/2026"

    def test_cached_on_second_request(self, client, sources):
        client.get("/api/cook/clerk-data", params={"pin": VALID_PIN})
        body = client.get("/api/cook/clerk-data", params={"pin": VALID_PIN}).json()

        assert body["cached"] is True
        assert "cachedAt" in body
        assert sources.calls == [SourceKind.CLERK]

    def test_refresh_bypasses_cache(self, client, sources):
        client.get("/api/cook/clerk-data", params={"pin": VALID_PIN})
        body = client.get("/api/cook/clerk-data", params={"pin": VALID_PIN, "refresh": "true"}).json()

        assert "cached" not in body
        assert sources.calls == [SourceKind.CLERK, SourceKind.CLERK]

    def test_not_found_is_404(self, client):
        response = client.get("/api/cook/recorder-data", params={"pin": VALID_PIN})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_fetch_error_is_502(self, client):
        response = client.get("/api/cook/tax-portal-data", params={"pin": VALID_PIN})

        assert response.status_code == 502
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "FETCH_ERROR"

    def test_stale_fallback(self, client, property_cache, clock, pin):
        property_cache.upsert_cached(pin, SourceKind.GIS, {"center_lat": 41.9})
        clock.advance(days=8)

        response = client.get("/api/cook/cookviewer-data", params={"pin": VALID_PIN})

        assert response.status_code == 200
        assert response.json()["stale"] is True

    def test_aggregated(self, client):
        response = client.get("/api/cook/property", params={"pin": VALID_PIN})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["pin"] == VALID_PIN
        sources = body["sources"]
        assert sources["clerk"]["success"] is True
        assert sources["recorder"]["code"] == "NOT_FOUND"
        assert sources["tax-portal"]["code"] == "FETCH_ERROR"
        assert sources["cookviewer"]["code"] == "FETCH_ERROR"

    def test_raw_clerk_page(self, client):
        response = client.get("/api/cook/county-clerk", params={"pin": VALID_PIN})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "collapseTwo" in response.text

    def test_clear_cache(self, client, property_cache, pin):
        client.get("/api/cook/clerk-data", params={"pin": VALID_PIN})

        body = client.post("/api/cook/clear-cache", params={"pin": VALID_PIN, "persistent": "true"}).json()

        assert body["success"] is True
        assert body["persistentCacheCleared"] == 1
        assert property_cache.get_cached(pin, SourceKind.CLERK) is None

    def test_google_without_key(self, client):
        response = client.get("/api/cook/google-maps-data", params={"lat": 41.88, "lon": -87.63})

        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_CREDENTIALS"

    def test_malformed_query_parameter_uses_envelope(self, client):
        response = client.get("/api/cook/google-maps-data", params={"lat": "abc", "lon": 1})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert body["error"].startswith("lat:")
        assert "detail" not in body


class TestBidRoutes:
    def test_round_trip(self, client):
        assert client.get(f"/api/pins/{VALID_PIN}/bids").json()["data"]["bid"] is None

        saved = client.put(f"/api/pins/{VALID_PIN}/bids", json={"bid": "$1,000", "overbid": "250"}).json()

        assert saved["data"]["bid"] == "1000"
        assert saved["data"]["overbid"] == "250"
        assert client.get(f"/api/pins/{VALID_PIN}/bids").json()["data"]["bid"] == "1000"

    def test_invalid_amount(self, client):
        response = client.put(f"/api/pins/{VALID_PIN}/bids", json={"bid": "lots"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Bid must be a valid number", "code": "INVALID_BID"}

    def test_invalid_pin(self, client):
        assert client.get("/api/pins/not-a-pin/bids").status_code == 400


class TestImportRoutes:
    def test_pin_list_job_runs(self, client):
        response = client.post("/api/import/pins", json={"pins": [VALID_PIN, "16104210530000", "junk"]})

        assert response.status_code == 200
        created = response.json()
        assert created["totalPins"] == 2

        job = client.get(f"/api/import/jobs/{created['jobId']}").json()["job"]
        assert job["status"] == "complete"
        assert job["completedPins"] == 2
        assert "recorder: No recorded documents found" in job["pins"][0]["error"]

    def test_upload(self, client):
        content = b"pin\n01-01-120-006-0000\n"
        response = client.post("/api/import/upload", files={"file": ("pins.csv", content, "text/csv")})

        assert response.status_code == 200
        assert response.json()["filename"] == "pins.csv"
        assert len(client.get("/api/import/jobs").json()["jobs"]) == 1

    def test_upload_without_pins(self, client):
        response = client.post("/api/import/upload", files={"file": ("empty.csv", b"a,b\n", "text/csv")})

        assert response.status_code == 400
        assert response.json()["error"] == "No valid PINs found in file"

    def test_unknown_job_is_404(self, client):
        response = client.get("/api/import/jobs/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "JOB_NOT_FOUND"

    def test_delete_job(self, client):
        created = client.post("/api/import/pins", json={"pins": [VALID_PIN]}).json()

        assert client.delete(f"/api/import/jobs/{created['jobId']}").json()["success"] is True
        assert client.get(f"/api/import/jobs/{created['jobId']}").status_code == 404


class TestHealthAndStats:
    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"

    def test_cache_stats(self, client):
        client.get("/api/cook/clerk-data", params={"pin": VALID_PIN})

        body = client.get("/api/cache/stats").json()

        assert body["success"] is True
        assert body["totalCacheRows"] == 1
        assert body["bySource"] == {"clerk": 1}
        assert body["totalJobs"] == 0
        assert "fetchCache" in body
