import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from hazard_intel.config import PipelineConfig
from hazard_intel.connectors import (
    ConnectorError,
    FacebookConnector,
    FeedSource,
    RSSConnector,
    TwitterConnector,
    YouTubeConnector,
    build_connectors,
)
from hazard_intel.connectors.rss import extract_text, item_id_for_link, strip_tracking_params
from hazard_intel.connectors.twitter import bbox_centre
from hazard_intel.dispatch import HttpDispatchers
from hazard_intel.rate_limit import ProviderError, RequestScheduler

TWEETS = {
    "data": [
        {
            "id": "1",
            "text": "Tsunami warning for the Chennai coast",
            "author_id": "u1",
            "created_at": "2024-05-01T10:00:00Z",
            "public_metrics": {"like_count": 5, "retweet_count": 2, "reply_count": 1},
            "geo": {"place_id": "p1"},
        },
        {"text": "row without an id"},
        {"id": "2", "text": "Sea receding at Baga beach", "author_id": "u2"},
    ],
    "includes": {
        "users": [
            {"id": "u1", "username": "coastwatch", "location": "Delhi"},
            {"id": "u2", "username": "goalocal", "location": "Goa"},
        ],
        "places": [{"id": "p1", "full_name": "Chennai, India", "geo": {"bbox": [80.0, 13.0, 80.4, 13.2]}}],
    },
}


def _scheduler(clock, **dispatchers) -> RequestScheduler:
    return RequestScheduler(dispatchers, max_retries=0, clock=clock, sleep=clock.sleep)


def test_twitter_normalizes_tweets_and_drops_malformed_rows(clock) -> None:
    requests: list = []

    async def twitter(request):
        requests.append(request)
        return TWEETS if "tsunami" in request["params"]["query"] else {"data": []}

    connector = TwitterConnector(_scheduler(clock, twitter=twitter))
    items = asyncio.run(connector.fetch_hazard_content("Chennai", max_results=12))

    assert [item.id for item in items] == ["1", "2"]
    first, second = items
    assert first.source == "twitter"
    assert first.author == "coastwatch"
    assert first.url == "https://twitter.com/coastwatch/status/1"
    assert first.location_hint == "Chennai, India"
    assert first.coordinate.lat == pytest.approx(13.1)
    assert first.coordinate.lon == pytest.approx(80.2)
    assert (first.engagement.likes, first.engagement.shares, first.engagement.comments) == (5, 2, 1)
    assert second.location_hint == "Goa"
    assert second.coordinate is None
    assert not second.engagement.is_known

    assert len(requests) == 6
    params = requests[0]["params"]
    assert params["query"].endswith("(Chennai OR near:Chennai) -is:retweet")
    assert params["max_results"] == 10


def test_failed_sub_query_is_isolated(clock) -> None:
    async def twitter(request):
        if "cyclone" in request["params"]["query"]:
            raise ProviderError("twitter", "HTTP 503", status_code=503)
        return TWEETS if "tsunami" in request["params"]["query"] else {"data": []}

    connector = TwitterConnector(_scheduler(clock, twitter=twitter))
    items = asyncio.run(connector.fetch_hazard_content("India", max_results=60))

    assert [item.id for item in items] == ["1", "2"]
    assert len(connector.last_errors) == 1
    assert "HTTP 503" in connector.last_errors[0]


def test_connector_error_when_every_sub_query_fails(clock) -> None:
    async def twitter(request):
        raise ProviderError("twitter", "HTTP 401", status_code=401)

    connector = TwitterConnector(_scheduler(clock, twitter=twitter))
    with pytest.raises(ConnectorError):
        asyncio.run(connector.fetch_hazard_content())
    assert len(connector.last_errors) == len(connector.sub_queries("India"))


def test_twitter_hazard_query_and_bbox_helper() -> None:
    connector = TwitterConnector(RequestScheduler())
    assert connector.hazard_query("Cyclone", "India") == "cyclone OR hurricane OR typhoon"
    assert connector.hazard_query("king tide", "India") == "king tide"
    assert bbox_centre([1.0, 2.0]) is None


def test_youtube_fetches_search_then_details(clock) -> None:
    requests: list = []

    async def youtube(request):
        requests.append(request)
        if request["endpoint"] == "search":
            return {"items": [{"id": {"videoId": "v1"}}, {"id": {"videoId": "v1"}}, {"id": {}}]}
        if request["endpoint"] == "videos":
            return {
                "items": [
                    {
                        "id": "v1",
                        "snippet": {
                            "title": "Cyclone update",
                            "description": "Landfall expected near Puri",
                            "channelTitle": "WeatherDesk",
                            "publishedAt": "2024-06-09T08:00:00Z",
                        },
                        "statistics": {"viewCount": "1000", "likeCount": "40", "commentCount": "3"},
                    },
                    {"id": "broken"},
                ]
            }
        raise ProviderError("youtube", "comments disabled", status_code=403)

    connector = YouTubeConnector(
        _scheduler(clock, youtube=youtube),
        include_comments=True,
        now=lambda: datetime(2024, 6, 10, 15, 30, tzinfo=timezone.utc),
    )
    items = asyncio.run(connector.search_hazard("cyclone", "Odisha", limit=5))

    assert [item.id for item in items] == ["v1"]
    video = items[0]
    assert video.text == "Cyclone update\n\nLandfall expected near Puri"
    assert video.author == "WeatherDesk"
    assert video.url == "https://www.youtube.com/watch?v=v1"
    assert (video.engagement.likes, video.engagement.comments, video.engagement.views) == (40, 3, 1000)
    assert video.engagement.shares is None

    search = requests[0]["params"]
    assert search["q"] == "cyclone Odisha"
    assert search["publishedAfter"] == "2024-06-03T00:00:00Z"
    assert search["maxResults"] == 5
    assert requests[1]["params"]["id"] == "v1"


def test_facebook_filters_page_posts_and_skips_failed_pages(clock) -> None:
    calls: dict[str, int] = {}

    async def facebook(request):
        endpoint = request["endpoint"]
        calls[endpoint] = calls.get(endpoint, 0) + 1
        if endpoint == "imd/posts":
            raise ProviderError("facebook", "HTTP 500", status_code=500)
        return {
            "data": [
                {
                    "id": "ndtv_1",
                    "message": "Cyclone Remal makes landfall",
                    "likes": {"summary": {"total_count": 10}},
                    "shares": {"count": 3},
                    "comments": {"summary": {"total_count": 2}},
                },
                {"id": "ndtv_2", "message": "Flood waters recede in Assam"},
                {"id": "ndtv_3"},
                {"id": "ndtv_4", "message": "Storm and cyclone warnings extended"},
            ]
        }

    connector = FacebookConnector(_scheduler(clock, facebook=facebook), page_ids=["ndtv", "imd"])
    items = asyncio.run(connector.fetch_hazard_content(max_results=50))

    assert [item.id for item in items] == ["ndtv_1", "ndtv_4", "ndtv_2"]
    assert items[0].author == "ndtv"
    assert items[0].url == "https://facebook.com/ndtv_1"
    assert (items[0].engagement.likes, items[0].engagement.shares, items[0].engagement.comments) == (10, 3, 2)
    assert calls["ndtv/posts"] == 1
    assert connector.last_errors == []


def test_facebook_all_pages_failing_fails_the_connector(clock) -> None:
    async def facebook(request):
        raise ProviderError("facebook", "HTTP 500", status_code=500)

    connector = FacebookConnector(_scheduler(clock, facebook=facebook), page_ids=["ndtv"])
    with pytest.raises(ConnectorError):
        asyncio.run(connector.fetch_hazard_content())


def test_rss_filters_entries_by_hazard_keywords(clock) -> None:
    async def rss(request):
        assert request == {"url": "https://example.org/feed"}
        return [
            {
                "title": "Cyclone alert for Odisha",
                "link": "https://example.org/a?id=7&utm_source=x",
                "summary": "IMD issues   red warning",
                "published": "Mon, 10 Jun 2024 08:00:00 GMT",
            },
            {"title": "Cricket scores", "link": "https://example.org/b", "summary": "India wins"},
            {"title": "Flood in Assam", "link": ""},
        ]

    connector = RSSConnector(
        _scheduler(clock, rss=rss),
        feeds=[FeedSource("Example", "https://example.org/feed")],
    )
    items = asyncio.run(connector.fetch_hazard_content())

    assert len(items) == 1
    item = items[0]
    assert item.text == "Cyclone alert for Odisha\n\nIMD issues red warning"
    assert item.author == "Example"
    assert item.id == item_id_for_link("https://example.org/a?id=7")
    assert item.id.startswith("rss_")


def test_rss_helpers() -> None:
    assert strip_tracking_params("https://x.org/p?utm_medium=rss&fbclid=1&page=2#top") == "https://x.org/p?page=2"
    html = extract_text("<p>Heavy rain <b>lashes</b> Mumbai</p>")
    assert "Mumbai" in html
    assert "<" not in html
    assert extract_text("") == ""


def _dispatchers(client: httpx.AsyncClient) -> HttpDispatchers:
    return HttpDispatchers(
        client,
        hf_api_key="hf-key",
        twitter_bearer_token="tw-token",
        youtube_api_key="",
        facebook_access_token="",
    )


def test_http_dispatchers_raise_provider_error_on_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer tw-token"
        return httpx.Response(500, json={"error": "boom"})

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await _dispatchers(client).twitter({"endpoint": "tweets/search/recent", "params": {"query": "flood"}})

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(run())
    assert exc_info.value.status_code == 500
    assert exc_info.value.source == "twitter"


def test_http_dispatchers_parse_rss_feed() -> None:
    feed = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Example</title>
<item><title>Flood warning</title><link>https://example.org/flood</link>
<description>Rivers rising</description><pubDate>Mon, 10 Jun 2024 08:00:00 GMT</pubDate></item>
</channel></rss>"""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=feed, headers={"Content-Type": "application/rss+xml"})

    async def run() -> list:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await _dispatchers(client).rss({"url": "https://example.org/feed"})

    entries = asyncio.run(run())
    assert entries[0]["title"] == "Flood warning"
    assert entries[0]["link"] == "https://example.org/flood"
    assert entries[0]["summary"] == "Rivers rising"


def test_build_connectors_skips_missing_credentials_and_disabled_flags(monkeypatch) -> None:
    dispatchers = HttpDispatchers(
        hf_api_key="", twitter_bearer_token="tw-token", youtube_api_key="", facebook_access_token=""
    )
    config = PipelineConfig()

    connectors = build_connectors(RequestScheduler(), config, dispatchers)
    assert [c.source for c in connectors] == ["twitter", "rss"]

    monkeypatch.setenv("HI_FLAG_RSS_ENABLED", "false")
    connectors = build_connectors(RequestScheduler(), config, dispatchers)
    assert [c.source for c in connectors] == ["twitter"]
