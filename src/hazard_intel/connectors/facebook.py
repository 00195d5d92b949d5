"""Facebook Graph connector over public news-page posts."""

from __future__ import annotations

import logging
from typing import List

from pydantic import BaseModel, ConfigDict

from ..models import RawItem
from ..rate_limit import RequestScheduler
from ..taxonomy import HAZARD_SEARCH_TERMS
from .base import HazardConnector

_log = logging.getLogger(__name__)

NEWS_PAGE_IDS = ["ndtv", "timesnow", "abpnews", "republicworld", "zeenews"]
POST_FIELDS = (
    "id,message,created_time,likes.limit(0).summary(true),shares,"
    "comments.limit(0).summary(true),permalink_url"
)


class _Summary(BaseModel):
    total_count: int | None = None


class _Counted(BaseModel):
    summary: _Summary | None = None


class _Shares(BaseModel):
    count: int | None = None


class FacebookPost(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    message: str | None = None
    created_time: str | None = None
    permalink_url: str | None = None
    likes: _Counted | None = None
    shares: _Shares | None = None
    comments: _Counted | None = None


def _summary_count(block: _Counted | None) -> int | None:
    return block.summary.total_count if block and block.summary else None


class FacebookConnector(HazardConnector):
    """Page post search is not public, so posts of known news pages are filtered by hazard term."""

    source = "facebook"

    def __init__(
        self,
        scheduler: RequestScheduler,
        *,
        default_location: str = "India",
        page_ids: List[str] | None = None,
        posts_per_page: int = 10,
    ) -> None:
        super().__init__(scheduler, default_location=default_location)
        self.page_ids = list(page_ids if page_ids is not None else NEWS_PAGE_IDS)
        self.posts_per_page = posts_per_page

    def sub_queries(self, location: str) -> List[str]:
        return list(HAZARD_SEARCH_TERMS)

    def hazard_query(self, hazard: str, location: str) -> str | None:
        return hazard.lower()

    async def _fetch_query(self, query: str, location: str, limit: int) -> List[RawItem]:
        items: list[RawItem] = []
        failures = 0
        for page_id in self.page_ids:
            try:
                posts = await self._page_posts(page_id)
            except Exception as exc:
                failures += 1
                _log.warning("Facebook page %s failed: %s", page_id, exc)
                continue
            term = query.lower()
            for post in posts:
                if post.message and term in post.message.lower():
                    item = self._to_item(post, page_id)
                    if item is not None:
                        items.append(item)
        if self.page_ids and failures == len(self.page_ids):
            raise RuntimeError(f"all {failures} news pages failed")
        return items[:limit]

    async def _page_posts(self, page_id: str) -> List[FacebookPost]:
        # Identical for every term, so the scheduler cache serves repeats.
        payload = await self.scheduler.enqueue(
            self.source,
            {"endpoint": f"{page_id}/posts", "params": {"fields": POST_FIELDS, "limit": self.posts_per_page}},
        )
        rows = payload.get("data") if isinstance(payload, dict) else None
        return self._parse_rows(FacebookPost, rows)

    def _to_item(self, post: FacebookPost, page_id: str) -> RawItem | None:
        return self._validate(
            {
                "id": post.id,
                "author": page_id,
                "text": post.message or "",
                "timestamp": post.created_time,
                "url": post.permalink_url or f"https://facebook.com/{post.id}",
                "engagement": {
                    "likes": _summary_count(post.likes),
                    "shares": post.shares.count if post.shares else None,
                    "comments": _summary_count(post.comments),
                },
            }
        )
