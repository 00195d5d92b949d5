"""Field verification: capture-metadata checks and the optional authority advisory lookup."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx

from .models import AuthorityStatus, Coordinate, VerificationMetadata
from .settings import get_authority_api_key, get_authority_api_url
from .time_utils import parse_published_datetime

_log = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float | None, lon1: float | None, lat2: float | None, lon2: float | None) -> float:
    values = (lat1, lon1, lat2, lon2)
    if any(v is None or (isinstance(v, float) and math.isnan(v)) for v in values):
        return math.inf
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass
class CaptureMetadata:
    """What a submitted photo says about itself (EXIF time and GPS)."""

    captured_at: str | None = None
    coordinate: Coordinate | None = None


def build_verification(
    capture: CaptureMetadata | None,
    *,
    submitted_at: datetime | str | None,
    device_coordinate: Coordinate | None,
    authority_status: AuthorityStatus = AuthorityStatus.DISABLED,
    max_delay_hours: float = 24.0,
    max_distance_km: float = 5.0,
) -> VerificationMetadata:
    capture = capture or CaptureMetadata()

    delayed = False
    captured_at = parse_published_datetime(capture.captured_at)
    submitted = (
        submitted_at if isinstance(submitted_at, datetime) else parse_published_datetime(submitted_at)
    )
    if captured_at is not None and submitted is not None:
        delayed = (submitted - captured_at) > timedelta(hours=max_delay_hours)

    location_match: bool | None = None
    distance: float | None = None
    if capture.coordinate is not None and device_coordinate is not None:
        distance = haversine_km(
            capture.coordinate.lat,
            capture.coordinate.lon,
            device_coordinate.lat,
            device_coordinate.lon,
        )
        location_match = distance <= max_distance_km

    return VerificationMetadata(
        delayed_upload=delayed,
        location_match=location_match,
        authority_status=authority_status,
        distance_km=round(distance, 3) if distance is not None else None,
    )


class AuthorityVerifier:
    """Ask a warning authority whether an advisory is active at a place and time.

    Contract: ``GET ?lat=..&lon=..&time=..`` returning ``{"active": bool}``
    (``has_alert`` is accepted too).  Unconfigured means ``disabled``.
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.url = (url if url is not None else get_authority_api_url()).strip()
        self._api_key = api_key if api_key is not None else get_authority_api_key()
        self._client = client
        self._timeout = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def verify(self, lat: float, lon: float, time: str | None = None) -> AuthorityStatus:
        if not self.enabled:
            return AuthorityStatus.DISABLED
        params: dict[str, Any] = {"lat": lat, "lon": lon}
        if time:
            params["time"] = time
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            if self._client is not None:
                response = await self._client.get(self.url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self.url, params=params, headers=headers)
            if response.status_code >= 400:
                _log.warning("Authority verification HTTP %s", response.status_code)
                return AuthorityStatus.ERROR
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            _log.warning("Authority verification failed: %s", exc)
            return AuthorityStatus.ERROR
        active = bool(isinstance(payload, dict) and (payload.get("active") or payload.get("has_alert")))
        return AuthorityStatus.VERIFIED if active else AuthorityStatus.NOT_VERIFIED
