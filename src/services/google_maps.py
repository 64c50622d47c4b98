"""Google Static Maps and Street View imagery for parcel coordinates."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from core.config import get_settings
from core.exceptions import GoogleImageryError, MissingCredentialsError
from core.logging_config import get_logger, log_external_call, redact_url
from core.utils import to_data_uri
from services.cache import TTLCache
from services.retry import elapsed_ms

LOGGER = get_logger(__name__)

STATIC_MAP_URL = "https://maps.googleapis.com/maps/api/staticmap"
STREET_VIEW_URL = "https://maps.googleapis.com/maps/api/streetview"

# Google answers quota and "no imagery" conditions with tiny placeholder images
MIN_IMAGE_BYTES = 200

THUMBNAIL_SIZE = "200x150"
FULL_SIZE = "400x300"


@dataclass
class GoogleImagery:
    """Satellite and street-level images for one coordinate."""

    satellite: Optional[str] = None
    street_view: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"google_satellite": self.satellite, "google_street_view": self.street_view}


async def fetch_image_data_uri(
    client: httpx.AsyncClient,
    url: str,
    *,
    default_mime: str,
    min_bytes: int = MIN_IMAGE_BYTES,
    service: str = "google_maps",
    operation: str = "image",
) -> Optional[str]:
    """
    Download an image and return it as a data URI.

    Returns None for non-2xx answers, transport errors and images of
    ``min_bytes`` or less. Never raises for upstream trouble.
    """
    start = time.perf_counter()
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        log_external_call(
            LOGGER, service, operation, False, elapsed_ms(start),
            url=redact_url(url), error=str(e),
        )
        return None

    duration_ms = elapsed_ms(start)
    usable = response.is_success and len(response.content) > min_bytes
    log_external_call(
        LOGGER, service, operation, usable, duration_ms,
        url=redact_url(url), status_code=response.status_code, size=len(response.content),
    )
    if not usable:
        return None

    mime = response.headers.get("content-type", "").split(";")[0].strip() or default_mime
    if not mime.startswith("image/"):
        mime = default_mime
    return to_data_uri(response.content, mime)


class GoogleMapsService:
    """Service for Google Static Maps / Street View imagery."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache: Optional[TTLCache] = None,
    ):
        """
        Initialize the Google Maps service.

        Args:
            api_key: Google API key (uses GOOGLE_API_KEY if not provided).
            transport: Optional httpx transport, for tests.
            cache: Cache for coordinate lookups (5 minutes by default).
        """
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.google_api_key
        self.timeout = settings.google_request_timeout
        self._transport = transport
        self._cache = cache or TTLCache(default_ttl_seconds=settings.fetch_cache_ttl_seconds)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _ensure_configured(self) -> None:
        if not self.api_key:
            raise MissingCredentialsError("GOOGLE_API_KEY not configured")

    def static_map_url(self, lat: float, lon: float, size: str) -> str:
        params = {
            "center": f"{lat},{lon}",
            "zoom": 19,
            "size": size,
            "maptype": "satellite",
            "key": self.api_key,
        }
        return f"{STATIC_MAP_URL}?{urlencode(params)}"

    def street_view_url(self, lat: float, lon: float, size: str) -> str:
        params = {
            "size": size,
            "location": f"{lat},{lon}",
            "fov": 90,
            "heading": 0,
            "pitch": 10,
            "key": self.api_key,
        }
        return f"{STREET_VIEW_URL}?{urlencode(params)}"

    async def fetch_imagery(
        self,
        client: httpx.AsyncClient,
        lat: float,
        lon: float,
        size: str = THUMBNAIL_SIZE,
    ) -> GoogleImagery:
        """
        Fetch both images concurrently on an existing client.

        Returns empty imagery when no API key is configured.
        """
        if not self.enabled:
            return GoogleImagery()
        satellite, street_view = await asyncio.gather(
            fetch_image_data_uri(
                client, self.static_map_url(lat, lon, size),
                default_mime="image/png", operation="static_map",
            ),
            fetch_image_data_uri(
                client, self.street_view_url(lat, lon, size),
                default_mime="image/jpeg", operation="street_view",
            ),
        )
        return GoogleImagery(satellite=satellite, street_view=street_view)

    async def get_imagery(self, lat: float, lon: float) -> GoogleImagery:
        """
        Full-size imagery for a coordinate.

        Raises:
            MissingCredentialsError: No API key configured.
            GoogleImageryError: Neither image could be fetched.
        """
        self._ensure_configured()
        key = f"{lat},{lon}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self._transport
        ) as client:
            imagery = await self.fetch_imagery(client, lat, lon, size=FULL_SIZE)

        if imagery.satellite is None and imagery.street_view is None:
            raise GoogleImageryError("Failed to fetch Google Maps images")

        self._cache.set(key, imagery)
        return imagery


_service: Optional[GoogleMapsService] = None


def get_google_maps_service() -> GoogleMapsService:
    """Get the shared Google Maps service instance."""
    global _service
    if _service is None:
        _service = GoogleMapsService()
    return _service


__all__ = [
    "GoogleImagery",
    "GoogleMapsService",
    "fetch_image_data_uri",
    "get_google_maps_service",
    "THUMBNAIL_SIZE",
    "FULL_SIZE",
]
