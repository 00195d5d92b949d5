import asyncio
import math
from datetime import datetime, timezone

import httpx
import pytest

from hazard_intel.models import AuthorityStatus, Coordinate
from hazard_intel.verification import AuthorityVerifier, CaptureMetadata, build_verification, haversine_km

CHENNAI = Coordinate(lat=13.0827, lon=80.2707)
NEARBY = Coordinate(lat=13.0900, lon=80.2800)
MUMBAI = Coordinate(lat=19.0760, lon=72.8777)


def test_haversine() -> None:
    assert haversine_km(13.0827, 80.2707, 13.0827, 80.2707) == 0.0
    assert haversine_km(CHENNAI.lat, CHENNAI.lon, MUMBAI.lat, MUMBAI.lon) == pytest.approx(1030, rel=0.02)
    assert math.isinf(haversine_km(None, 80.0, 13.0, 80.0))
    assert math.isinf(haversine_km(float("nan"), 80.0, 13.0, 80.0))


def test_capture_close_in_time_and_space_passes() -> None:
    verification = build_verification(
        CaptureMetadata(captured_at="2024-06-01T08:00:00Z", coordinate=NEARBY),
        submitted_at="2024-06-01T10:00:00Z",
        device_coordinate=CHENNAI,
    )
    assert verification.delayed_upload is False
    assert verification.location_match is True
    assert verification.distance_km < 5
    assert verification.authority_status == AuthorityStatus.DISABLED


def test_old_and_distant_capture_is_flagged() -> None:
    verification = build_verification(
        CaptureMetadata(captured_at="2024-05-30T08:00:00Z", coordinate=MUMBAI),
        submitted_at=datetime(2024, 6, 1, 10, tzinfo=timezone.utc),
        device_coordinate=CHENNAI,
        authority_status=AuthorityStatus.VERIFIED,
    )
    assert verification.delayed_upload is True
    assert verification.location_match is False
    assert verification.authority_status == AuthorityStatus.VERIFIED


def test_missing_capture_metadata_is_not_judged() -> None:
    verification = build_verification(None, submitted_at=None, device_coordinate=CHENNAI)
    assert verification.delayed_upload is False
    assert verification.location_match is None
    assert verification.distance_km is None


def _verify(handler, url: str = "https://authority.example/advisories") -> AuthorityStatus:
    async def run() -> AuthorityStatus:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            verifier = AuthorityVerifier(url, "secret", client=client)
            return await verifier.verify(13.08, 80.27, "2024-06-01T10:00:00Z")

    return asyncio.run(run())


def test_authority_verified_and_not_verified() -> None:
    def active(request: httpx.Request) -> httpx.Response:
        assert request.url.params["lat"] == "13.08"
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(200, json={"active": True})

    assert _verify(active) == AuthorityStatus.VERIFIED
    assert _verify(lambda request: httpx.Response(200, json={"has_alert": True})) == AuthorityStatus.VERIFIED
    assert _verify(lambda request: httpx.Response(200, json={"active": False})) == AuthorityStatus.NOT_VERIFIED


def test_authority_errors() -> None:
    assert _verify(lambda request: httpx.Response(503)) == AuthorityStatus.ERROR
    assert _verify(lambda request: httpx.Response(200, content=b"<html>")) == AuthorityStatus.ERROR

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert _verify(unreachable) == AuthorityStatus.ERROR


def test_unconfigured_authority_is_disabled() -> None:
    verifier = AuthorityVerifier("", "")
    assert not verifier.enabled
    assert asyncio.run(verifier.verify(13.0, 80.0)) == AuthorityStatus.DISABLED
