"""Twitter v2 recent-search connector."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from ..models import RawItem
from ..taxonomy import HAZARD_QUERIES_BY_TYPE, HAZARD_QUERY_TERMS
from .base import HazardConnector

SEARCH_ENDPOINT = "tweets/search/recent"
# The recent-search API accepts 10..100 results per page.
_MIN_PAGE, _MAX_PAGE = 10, 100


class TweetMetrics(BaseModel):
    like_count: int | None = None
    retweet_count: int | None = None
    reply_count: int | None = None
    quote_count: int | None = None


class TweetGeo(BaseModel):
    place_id: str | None = None


class Tweet(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    text: str = ""
    author_id: str | None = None
    created_at: str | None = None
    lang: str | None = None
    public_metrics: TweetMetrics | None = None
    geo: TweetGeo | None = None


class TwitterUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    username: str = "unknown"
    name: str | None = None
    location: str | None = None


class PlaceGeo(BaseModel):
    bbox: List[float] = Field(default_factory=list)


class TwitterPlace(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    full_name: str | None = None
    geo: PlaceGeo | None = None


def bbox_centre(bbox: List[float]) -> dict | None:
    """``[west, south, east, north]`` -> ``{"lat", "lon"}`` or ``None``."""
    if len(bbox) != 4:
        return None
    west, south, east, north = bbox
    return {"lat": (south + north) / 2, "lon": (west + east) / 2}


class TwitterConnector(HazardConnector):
    source = "twitter"

    def sub_queries(self, location: str) -> List[str]:
        return list(HAZARD_QUERY_TERMS)

    def hazard_query(self, hazard: str, location: str) -> str | None:
        return HAZARD_QUERIES_BY_TYPE.get(hazard.lower(), hazard)

    def build_request(self, query: str, location: str, limit: int) -> dict:
        location_clause = f" ({location} OR near:{location})" if location else ""
        return {
            "endpoint": SEARCH_ENDPOINT,
            "params": {
                "query": f"({query}){location_clause} -is:retweet",
                "tweet.fields": "created_at,author_id,public_metrics,lang,geo",
                "user.fields": "username,name,location,verified",
                "expansions": "author_id,geo.place_id",
                "place.fields": "country,country_code,full_name,geo",
                "max_results": min(max(limit, _MIN_PAGE), _MAX_PAGE),
            },
        }

    async def _fetch_query(self, query: str, location: str, limit: int) -> List[RawItem]:
        payload = await self.scheduler.enqueue(self.source, self.build_request(query, location, limit))
        if not isinstance(payload, dict):
            return []
        includes = payload.get("includes") or {}
        users = {u.id: u for u in self._parse_rows(TwitterUser, includes.get("users"))}
        places = {p.id: p for p in self._parse_rows(TwitterPlace, includes.get("places"))}

        items: list[RawItem] = []
        for tweet in self._parse_rows(Tweet, payload.get("data"))[:limit]:
            author = users.get(tweet.author_id or "")
            place = places.get(tweet.geo.place_id) if tweet.geo and tweet.geo.place_id else None
            metrics = tweet.public_metrics or TweetMetrics()
            username = author.username if author else "unknown"
            item = self._validate(
                {
                    "id": tweet.id,
                    "author": username,
                    "text": tweet.text,
                    "timestamp": tweet.created_at,
                    "language": tweet.lang,
                    "url": f"https://twitter.com/{username}/status/{tweet.id}",
                    "coordinate": bbox_centre(place.geo.bbox) if place and place.geo else None,
                    "location_hint": (place.full_name if place else None) or (author.location if author else None),
                    "engagement": {
                        "likes": metrics.like_count,
                        "shares": metrics.retweet_count,
                        "comments": metrics.reply_count,
                    },
                }
            )
            if item is not None:
                items.append(item)
        return items
