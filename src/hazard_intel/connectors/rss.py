"""News RSS connector filtered by hazard keywords."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import List
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import trafilatura
from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict, Field

from ..models import RawItem
from ..rate_limit import RequestScheduler
from ..taxonomy import mentions_hazard
from .base import HazardConnector

TRACKING_QUERY_PREFIXES = ("utm_",)
TRACKING_QUERY_KEYS = {"fbclid", "gclid", "cid"}


@dataclass
class FeedSource:
    name: str
    url: str


DEFAULT_FEEDS = [
    FeedSource("NDTV", "https://feeds.feedburner.com/ndtvnews-top-stories"),
    FeedSource("TOI", "https://timesofindia.indiatimes.com/rssfeedstopstories.cms"),
    FeedSource("HT", "https://www.hindustantimes.com/feeds/rss/india-news/index.xml"),
    FeedSource("IE", "https://indianexpress.com/section/india/feed/"),
]


class FeedEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    link: str = Field(min_length=1)
    summary: str = ""
    published: str | None = None
    author: str | None = None


def strip_tracking_params(url: str) -> str:
    parsed = urlparse(url.strip())
    clean = {
        key: values
        for key, values in parse_qs(parsed.query, keep_blank_values=False).items()
        if key.lower() not in TRACKING_QUERY_KEYS
        and not any(key.lower().startswith(prefix) for prefix in TRACKING_QUERY_PREFIXES)
    }
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, parsed.params, urlencode(clean, doseq=True), ""))


def item_id_for_link(link: str) -> str:
    digest = hashlib.sha1(strip_tracking_params(link).encode("utf-8")).hexdigest()
    return f"rss_{digest[:16]}"


def extract_text(html_or_text: str) -> str:
    if not html_or_text:
        return ""
    if "<" not in html_or_text:
        return " ".join(html_or_text.split())
    extracted = trafilatura.extract(html_or_text)
    if extracted:
        return extracted.strip()
    return BeautifulSoup(html_or_text, "html.parser").get_text(" ", strip=True)


class RSSConnector(HazardConnector):
    """One sub-query per feed; feeds are not location aware."""

    source = "rss"

    def __init__(
        self,
        scheduler: RequestScheduler,
        *,
        default_location: str = "India",
        feeds: List[FeedSource] | None = None,
    ) -> None:
        super().__init__(scheduler, default_location=default_location)
        self.feeds = list(feeds if feeds is not None else DEFAULT_FEEDS)
        self._names = {feed.url: feed.name for feed in self.feeds}

    def sub_queries(self, location: str) -> List[str]:
        return [feed.url for feed in self.feeds]

    async def _fetch_query(self, query: str, location: str, limit: int) -> List[RawItem]:
        entries = await self.scheduler.enqueue(self.source, {"url": query})
        feed_name = self._names.get(query, "rss")
        items: list[RawItem] = []
        for entry in self._parse_rows(FeedEntry, entries):
            summary = extract_text(entry.summary)
            text = f"{entry.title}\n\n{summary}".strip()
            if not mentions_hazard(text):
                continue
            item = self._validate(
                {
                    "id": item_id_for_link(entry.link),
                    "author": entry.author or feed_name,
                    "text": text,
                    "timestamp": entry.published,
                    "url": entry.link,
                }
            )
            if item is not None:
                items.append(item)
            if len(items) >= limit:
                break
        return items
