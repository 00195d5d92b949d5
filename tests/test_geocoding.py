import asyncio

import httpx
import pytest

from hazard_intel.geocoding import (
    GOOGLE_GEOCODE_URL,
    Geocoder,
    GeocodingError,
    google_confidence,
)

GOOGLE_OK = {
    "status": "OK",
    "results": [
        {
            "formatted_address": "Chennai, Tamil Nadu, India",
            "geometry": {"location": {"lat": 13.0827, "lng": 80.2707}, "location_type": "APPROXIMATE"},
        }
    ],
}
OPENCAGE_OK = {
    "status": {"code": 200, "message": "OK"},
    "results": [{"formatted": "Kochi, Kerala, India", "confidence": 7, "geometry": {"lat": 9.9312, "lng": 76.2673}}],
}


def _run(handler, places, **keys):
    calls: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(recording)) as client:
            geocoder = Geocoder(client, **{"google_api_key": "", "opencage_api_key": "", **keys})
            return [await geocoder.geocode(place) for place in places]

    return asyncio.run(run()), calls


def test_google_result_and_cache() -> None:
    results, calls = _run(lambda r: httpx.Response(200, json=GOOGLE_OK), ["Chennai", "  chennai "], google_api_key="g")

    first, second = results
    assert (first.lat, first.lon) == (13.0827, 80.2707)
    assert first.source == "google"
    assert first.confidence == 5
    assert first.formatted_address == "Chennai, Tamil Nadu, India"
    assert second == first
    assert len(calls) == 1
    assert calls[0].url.params["address"] == "Chennai"


def test_falls_back_to_opencage() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(GOOGLE_GEOCODE_URL):
            return httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})
        assert request.url.params["limit"] == "1"
        return httpx.Response(200, json=OPENCAGE_OK)

    results, calls = _run(handler, ["Kochi"], google_api_key="g", opencage_api_key="o")
    assert results[0].source == "opencage"
    assert results[0].confidence == 7
    assert len(calls) == 2


def test_out_of_range_coordinates_are_rejected() -> None:
    bad = {"status": "OK", "results": [{"geometry": {"location": {"lat": 123.0, "lng": 80.0}}}]}
    with pytest.raises(GeocodingError):
        _run(lambda r: httpx.Response(200, json=bad), ["Nowhere"], google_api_key="g")


def test_no_provider_configured() -> None:
    with pytest.raises(GeocodingError, match="No geocoding service available"):
        _run(lambda r: httpx.Response(200, json=GOOGLE_OK), ["Chennai"])


def test_google_confidence_by_location_type() -> None:
    assert google_confidence({"geometry": {"location_type": "ROOFTOP"}}) == 10
    assert google_confidence({"geometry": {"location_type": "RANGE_INTERPOLATED"}}) == 9
    assert google_confidence({"geometry": {"location_type": "GEOMETRIC_CENTER"}}) == 7
    assert google_confidence({}) == 3


@pytest.mark.parametrize("body", [[], "OK", 42, {"status": "OK", "results": ["Chennai"]}])
def test_non_object_bodies_become_geocoding_errors(body) -> None:
    with pytest.raises(GeocodingError):
        _run(lambda r: httpx.Response(200, json=body), ["Chennai"], google_api_key="g", opencage_api_key="o")
