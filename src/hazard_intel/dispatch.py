"""HTTP dispatchers used by the request scheduler, one per content source."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import feedparser
import httpx

from .rate_limit import Dispatcher, ProviderError
from .settings import (
    get_facebook_access_token,
    get_hf_api_key,
    get_twitter_bearer_token,
    get_youtube_api_key,
)

_log = logging.getLogger(__name__)

HF_BASE_URL = "https://api-inference.huggingface.co/models"
TWITTER_BASE_URL = "https://api.twitter.com/2"
YOUTUBE_BASE_URL = "https://www.googleapis.com/youtube/v3"
FACEBOOK_BASE_URL = "https://graph.facebook.com/v18.0"


class HttpDispatchers:
    """Async provider callers sharing one ``httpx.AsyncClient``.

    Each caller takes the scheduler request mapping and returns decoded
    JSON (or, for RSS, a list of plain entry dicts).  Any transport error
    or non-success status is raised as :class:`ProviderError` so the
    scheduler can retry it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_seconds: float = 10.0,
        hf_api_key: str | None = None,
        twitter_bearer_token: str | None = None,
        youtube_api_key: str | None = None,
        facebook_access_token: str | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)
        self._owns_client = client is None
        self._hf_api_key = hf_api_key if hf_api_key is not None else get_hf_api_key()
        self._twitter_token = (
            twitter_bearer_token if twitter_bearer_token is not None else get_twitter_bearer_token()
        )
        self._youtube_key = youtube_api_key if youtube_api_key is not None else get_youtube_api_key()
        self._facebook_token = (
            facebook_access_token if facebook_access_token is not None else get_facebook_access_token()
        )

    def as_mapping(self) -> dict[str, Dispatcher]:
        return {
            "huggingface": self.huggingface,
            "twitter": self.twitter,
            "youtube": self.youtube,
            "facebook": self.facebook,
            "rss": self.rss,
        }

    def has_credentials(self, source: str) -> bool:
        return {
            "huggingface": bool(self._hf_api_key),
            "twitter": bool(self._twitter_token),
            "youtube": bool(self._youtube_key),
            "facebook": bool(self._facebook_token),
            "rss": True,
        }.get(source, False)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send(self, source: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(source, f"{type(exc).__name__}: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(source, f"HTTP {response.status_code}", status_code=response.status_code)
        return response

    async def _json(self, source: str, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._send(source, method, url, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(source, "response body is not JSON") from exc

    async def huggingface(self, request: Mapping[str, Any]) -> Any:
        model = str(request["model"])
        headers = {"Content-Type": "application/json"}
        if self._hf_api_key:
            headers["Authorization"] = f"Bearer {self._hf_api_key}"
        return await self._json(
            "huggingface",
            "POST",
            f"{HF_BASE_URL}/{model}",
            headers=headers,
            json=dict(request.get("payload") or {}),
        )

    async def twitter(self, request: Mapping[str, Any]) -> Any:
        headers = {"Authorization": f"Bearer {self._twitter_token}"}
        return await self._json(
            "twitter",
            "GET",
            f"{TWITTER_BASE_URL}/{request['endpoint']}",
            params=dict(request.get("params") or {}),
            headers=headers,
        )

    async def youtube(self, request: Mapping[str, Any]) -> Any:
        params = dict(request.get("params") or {})
        params["key"] = self._youtube_key
        return await self._json("youtube", "GET", f"{YOUTUBE_BASE_URL}/{request['endpoint']}", params=params)

    async def facebook(self, request: Mapping[str, Any]) -> Any:
        params = dict(request.get("params") or {})
        params["access_token"] = self._facebook_token
        return await self._json("facebook", "GET", f"{FACEBOOK_BASE_URL}/{request['endpoint']}", params=params)

    async def rss(self, request: Mapping[str, Any]) -> list[dict[str, Any]]:
        response = await self._send("rss", "GET", str(request["url"]))
        parsed = feedparser.parse(response.content)
        if getattr(parsed, "bozo", False) and not parsed.entries:
            bozo_exc = getattr(parsed, "bozo_exception", "feed parse error")
            raise ProviderError("rss", f"unparseable feed: {bozo_exc}")
        entries: list[dict[str, Any]] = []
        for entry in parsed.entries:
            entries.append(
                {
                    "title": entry.get("title", ""),
                    "link": entry.get("link", ""),
                    "summary": entry.get("summary", "") or entry.get("description", ""),
                    "published": entry.get("published") or entry.get("updated"),
                    "author": entry.get("author"),
                    "categories": [t.get("term") for t in entry.get("tags", []) or [] if t.get("term")],
                }
            )
        _log.debug("Parsed %d RSS entries from %s", len(entries), request["url"])
        return entries
