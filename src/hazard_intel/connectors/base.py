"""Shared connector behaviour: one sub-query per hazard term, merged and capped."""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, List, Mapping

from pydantic import ValidationError

from ..models import RawItem
from ..rate_limit import RequestScheduler

_log = logging.getLogger(__name__)


class ConnectorError(RuntimeError):
    """Raised when every sub-query of a connector failed."""


class HazardConnector(ABC):
    source: str = ""

    def __init__(self, scheduler: RequestScheduler, *, default_location: str = "India") -> None:
        self.scheduler = scheduler
        self.default_location = default_location
        self.last_errors: list[str] = []

    @abstractmethod
    def sub_queries(self, location: str) -> List[str]:
        """Sub-queries issued for one ``fetch_hazard_content`` call."""

    @abstractmethod
    async def _fetch_query(self, query: str, location: str, limit: int) -> List[RawItem]:
        """Fetch and normalize one sub-query."""

    async def fetch_hazard_content(self, location_hint: str | None = None, max_results: int = 50) -> List[RawItem]:
        location = (location_hint or self.default_location or "").strip()
        queries = self.sub_queries(location)
        self.last_errors = []
        if not queries or max_results <= 0:
            return []
        per_query = max(1, math.ceil(max_results / len(queries)))

        results = await asyncio.gather(
            *(self._fetch_query(query, location, per_query) for query in queries),
            return_exceptions=True,
        )

        items: list[RawItem] = []
        seen: set[str] = set()
        for query, result in zip(queries, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                _log.warning("%s sub-query %r failed: %s", self.source, query, result)
                self.last_errors.append(f"{query}: {result}")
                continue
            for item in result:
                if item.id in seen:
                    continue
                seen.add(item.id)
                items.append(item)

        if len(self.last_errors) == len(queries):
            raise ConnectorError(f"{self.source}: all {len(queries)} sub-queries failed")
        return items[:max_results]

    def hazard_query(self, hazard: str, location: str) -> str | None:
        """Query for a single named hazard, or ``None`` if this source cannot search by term."""
        return None

    async def search_hazard(self, hazard: str, location_hint: str | None = None, limit: int = 20) -> List[RawItem]:
        location = (location_hint or self.default_location or "").strip()
        query = self.hazard_query(hazard.strip(), location)
        if query is None:
            return []
        return await self._fetch_query(query, location, limit)

    def _validate(self, row: Mapping[str, Any]) -> RawItem | None:
        try:
            return RawItem.model_validate({"source": self.source, **row})
        except ValidationError as exc:
            _log.debug("Dropping malformed %s item: %s", self.source, exc)
            return None

    @staticmethod
    def _parse_rows(schema: Any, rows: Any) -> list:
        """Validate provider rows one at a time, dropping the ones that do not fit."""
        parsed = []
        for row in rows if isinstance(rows, list) else []:
            try:
                parsed.append(schema.model_validate(row))
            except ValidationError as exc:
                _log.debug("Dropping malformed %s row: %s", schema.__name__, exc)
        return parsed
