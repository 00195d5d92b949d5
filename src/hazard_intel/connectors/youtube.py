"""YouTube Data v3 connector: video search, details with statistics, optional comments."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict

from ..models import RawItem
from ..rate_limit import RequestScheduler
from ..taxonomy import HAZARD_SEARCH_TERMS
from .base import HazardConnector

_log = logging.getLogger(__name__)

SEARCH_WINDOW_DAYS = 7


class VideoSnippet(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    description: str = ""
    channelTitle: str = "unknown"
    publishedAt: str | None = None
    defaultLanguage: str | None = None


class VideoStatistics(BaseModel):
    model_config = ConfigDict(extra="ignore")

    viewCount: int | None = None
    likeCount: int | None = None
    commentCount: int | None = None


class Video(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    snippet: VideoSnippet
    statistics: VideoStatistics | None = None


class CommentSnippet(BaseModel):
    model_config = ConfigDict(extra="ignore")

    textDisplay: str = ""
    authorDisplayName: str = "unknown"
    publishedAt: str | None = None
    likeCount: int | None = None


def _items(payload: Any) -> List[Any]:
    if not isinstance(payload, dict):
        return []
    rows = payload.get("items")
    return rows if isinstance(rows, list) else []


def _search_ids(payload: Any) -> List[str]:
    ids: list[str] = []
    for row in _items(payload):
        id_block = row.get("id") if isinstance(row, dict) else None
        video_id = id_block.get("videoId") if isinstance(id_block, dict) else None
        if video_id and str(video_id) not in ids:
            ids.append(str(video_id))
    return ids


def _comment_snippets(payload: Any) -> List[tuple[str, Dict[str, Any]]]:
    rows: list[tuple[str, Dict[str, Any]]] = []
    for row in _items(payload):
        try:
            rows.append((str(row["id"]), row["snippet"]["topLevelComment"]["snippet"]))
        except (KeyError, TypeError):
            continue
    return rows


class YouTubeConnector(HazardConnector):
    source = "youtube"

    def __init__(
        self,
        scheduler: RequestScheduler,
        *,
        default_location: str = "India",
        include_comments: bool = False,
        comments_per_video: int = 5,
        now: Any = None,
    ) -> None:
        super().__init__(scheduler, default_location=default_location)
        self.include_comments = include_comments
        self.comments_per_video = comments_per_video
        self._now = now or (lambda: datetime.now(timezone.utc))

    def sub_queries(self, location: str) -> List[str]:
        return [f"{term} {location}".strip() for term in HAZARD_SEARCH_TERMS]

    def hazard_query(self, hazard: str, location: str) -> str | None:
        return f"{hazard} {location}".strip()

    def _published_after(self) -> str:
        # Day granularity keeps the request fingerprint stable for the cache.
        start = (self._now() - timedelta(days=SEARCH_WINDOW_DAYS)).date()
        return f"{start.isoformat()}T00:00:00Z"

    async def _fetch_query(self, query: str, location: str, limit: int) -> List[RawItem]:
        search = await self.scheduler.enqueue(
            self.source,
            {
                "endpoint": "search",
                "params": {
                    "part": "snippet",
                    "q": query,
                    "type": "video",
                    "order": "date",
                    "publishedAfter": self._published_after(),
                    "maxResults": min(limit, 50),
                },
            },
        )
        ids = _search_ids(search)
        if not ids:
            return []
        details = await self.scheduler.enqueue(
            self.source,
            {"endpoint": "videos", "params": {"part": "snippet,statistics", "id": ",".join(ids)}},
        )
        videos = self._parse_rows(Video, _items(details))

        items: list[RawItem] = []
        for video in videos:
            stats = video.statistics or VideoStatistics()
            item = self._validate(
                {
                    "id": video.id,
                    "author": video.snippet.channelTitle,
                    "text": f"{video.snippet.title}\n\n{video.snippet.description}".strip(),
                    "timestamp": video.snippet.publishedAt,
                    "language": video.snippet.defaultLanguage,
                    "url": f"https://www.youtube.com/watch?v={video.id}",
                    "engagement": {
                        "likes": stats.likeCount,
                        "comments": stats.commentCount,
                        "views": stats.viewCount,
                    },
                }
            )
            if item is None:
                continue
            items.append(item)
            if self.include_comments:
                items.extend(await self._fetch_comments(video.id))
        return items[:limit]

    async def _fetch_comments(self, video_id: str) -> List[RawItem]:
        try:
            payload = await self.scheduler.enqueue(
                self.source,
                {
                    "endpoint": "commentThreads",
                    "params": {
                        "part": "snippet",
                        "videoId": video_id,
                        "order": "relevance",
                        "maxResults": self.comments_per_video,
                    },
                },
            )
        except Exception as exc:
            _log.warning("YouTube comments for %s unavailable: %s", video_id, exc)
            return []
        comments: list[RawItem] = []
        for comment_id, raw in _comment_snippets(payload):
            try:
                snippet = CommentSnippet.model_validate(raw)
            except ValueError:
                continue
            item = self._validate(
                {
                    "id": comment_id,
                    "author": snippet.authorDisplayName,
                    "text": snippet.textDisplay,
                    "timestamp": snippet.publishedAt,
                    "url": f"https://www.youtube.com/watch?v={video_id}&lc={comment_id}",
                    "engagement": {"likes": snippet.likeCount},
                }
            )
            if item is not None:
                comments.append(item)
        return comments
