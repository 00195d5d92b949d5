"""Place-name geocoding: Google first, OpenCage as fallback, one-hour cache."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from .settings import get_google_geocoding_api_key, get_opencage_api_key

_log = logging.getLogger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
OPENCAGE_GEOCODE_URL = "https://api.opencagedata.com/geocode/v1/json"

CACHE_TTL_SECONDS = 3600.0

_LOCATION_TYPE_CONFIDENCE = {
    "ROOFTOP": 10,
    "RANGE_INTERPOLATED": 9,
    "GEOMETRIC_CENTER": 7,
    "APPROXIMATE": 5,
}


class GeocodingError(RuntimeError):
    pass


@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lon: float
    confidence: int
    source: str
    formatted_address: str = ""


def valid_coordinates(lat: float, lon: float) -> bool:
    return -90 <= lat <= 90 and -180 <= lon <= 180


def google_confidence(result: dict[str, Any]) -> int:
    location_type = (result.get("geometry") or {}).get("location_type")
    return _LOCATION_TYPE_CONFIDENCE.get(location_type, 3)


class Geocoder:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        google_api_key: str | None = None,
        opencage_api_key: str | None = None,
        timeout_seconds: float = 10.0,
        cache_ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None
        self._google_key = google_api_key if google_api_key is not None else get_google_geocoding_api_key()
        self._opencage_key = opencage_api_key if opencage_api_key is not None else get_opencage_api_key()
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[str, tuple[GeocodeResult, float]] = {}

    @property
    def configured(self) -> bool:
        return bool(self._google_key or self._opencage_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def geocode(self, place: str) -> GeocodeResult:
        key = (place or "").strip().lower()
        if not key:
            raise GeocodingError("Place name is required")

        cached = self._cache.get(key)
        if cached is not None and self._clock() - cached[1] < self._cache_ttl:
            return cached[0]

        errors: list[str] = []
        providers = (
            ("google", self._google_key, self._geocode_google),
            ("opencage", self._opencage_key, self._geocode_opencage),
        )
        for name, api_key, provider in providers:
            if not api_key:
                continue
            try:
                result = await provider(place.strip())
            except (GeocodingError, httpx.HTTPError, ValueError) as exc:
                _log.warning("%s geocoding failed for %r: %s", name, place, exc)
                errors.append(f"{name}: {exc}")
                continue
            self._cache[key] = (result, self._clock())
            return result

        if not errors:
            raise GeocodingError("No geocoding service available. Configure an API key.")
        raise GeocodingError("; ".join(errors))

    async def _geocode_google(self, place: str) -> GeocodeResult:
        response = await self._client.get(GOOGLE_GEOCODE_URL, params={"address": place, "key": self._google_key})
        data = _json_object(response)
        results = data.get("results") or []
        if data.get("status") != "OK" or not isinstance(results, list) or not results:
            raise GeocodingError(f"{data.get('status')} - {data.get('error_message') or 'No results found'}")
        first = results[0]
        if not isinstance(first, dict):
            raise GeocodingError("malformed result entry")
        location = (first.get("geometry") or {}).get("location") or {}
        return self._result(
            location.get("lat"),
            location.get("lng"),
            confidence=google_confidence(first),
            source="google",
            formatted_address=first.get("formatted_address", ""),
        )

    async def _geocode_opencage(self, place: str) -> GeocodeResult:
        response = await self._client.get(
            OPENCAGE_GEOCODE_URL,
            params={"q": place, "key": self._opencage_key, "limit": 1},
        )
        data = _json_object(response)
        status = data.get("status") or {}
        results = data.get("results") or []
        if not isinstance(status, dict):
            status = {}
        if status.get("code") != 200 or not isinstance(results, list) or not results:
            raise GeocodingError(str(status.get("message") or "No results found"))
        first = results[0]
        if not isinstance(first, dict):
            raise GeocodingError("malformed result entry")
        geometry = first.get("geometry") or {}
        return self._result(
            geometry.get("lat"),
            geometry.get("lng"),
            confidence=int(first.get("confidence") or 5),
            source="opencage",
            formatted_address=first.get("formatted", ""),
        )

    @staticmethod
    def _result(lat: Any, lon: Any, **kwargs: Any) -> GeocodeResult:
        try:
            lat_f, lon_f = float(lat), float(lon)
        except (TypeError, ValueError) as exc:
            raise GeocodingError("result has no coordinates") from exc
        if not valid_coordinates(lat_f, lon_f):
            raise GeocodingError(f"coordinates out of range: {lat_f}, {lon_f}")
        return GeocodeResult(lat=lat_f, lon=lon_f, **kwargs)


def _json_object(response: httpx.Response) -> dict:
    data = response.json()
    if not isinstance(data, dict):
        raise GeocodingError(f"unexpected response body ({type(data).__name__})")
    return data
