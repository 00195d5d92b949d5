"""Concurrent fan-out across content connectors with failure isolation."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from .connectors.base import HazardConnector
from .models import RawItem
from .time_utils import newest_first_key

_log = logging.getLogger(__name__)


@dataclass
class CollectionResult:
    items: List[RawItem]
    connector_metrics: List[dict] = field(default_factory=list)

    @property
    def failed_connectors(self) -> List[str]:
        return [m["connector"] for m in self.connector_metrics if m["status"] == "failed"]


def merge_items(batches: Iterable[Sequence[RawItem]], max_results: int | None = None) -> List[RawItem]:
    """Deduplicate by ``(source, id)``, sort newest first, then truncate.

    Unparseable timestamps sort last; ties keep their arrival order.
    """
    seen: set[tuple[str, str]] = set()
    merged: list[RawItem] = []
    for batch in batches:
        for item in batch:
            key = (item.source, item.id)
            if key in seen:
                continue
            seen.add(key)
            merged.append(item)
    merged.sort(key=lambda item: newest_first_key(item.timestamp))
    return merged if max_results is None else merged[: max(0, max_results)]


def _metrics_row(connector: HazardConnector, status: str, fetched: int, error: str = "") -> dict:
    return {
        "connector": connector.source,
        "status": status,
        "fetched_count": fetched,
        "failed_queries": len(connector.last_errors),
        "error": error,
    }


async def fetch_all_hazard_content(
    connectors: Sequence[HazardConnector],
    location: str | None = None,
    max_results: int = 100,
) -> CollectionResult:
    if not connectors:
        return CollectionResult(items=[])
    per_connector = max(1, math.ceil(max_results / len(connectors)))
    results = await asyncio.gather(
        *(c.fetch_hazard_content(location, per_connector) for c in connectors),
        return_exceptions=True,
    )

    batches: list[list[RawItem]] = []
    metrics: list[dict] = []
    for connector, result in zip(connectors, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            _log.warning("Connector %s failed: %s", connector.source, result)
            metrics.append(_metrics_row(connector, "failed", 0, str(result)))
            continue
        status = "partial" if connector.last_errors else "ok"
        metrics.append(_metrics_row(connector, status, len(result)))
        batches.append(list(result))

    items = merge_items(batches, max_results)
    _log.info(
        "Collected %d item(s) from %d connector(s) (%d failed)",
        len(items),
        len(connectors),
        sum(1 for m in metrics if m["status"] == "failed"),
    )
    return CollectionResult(items=items, connector_metrics=metrics)


async def search_specific_hazard(
    connectors: Sequence[HazardConnector],
    hazard: str,
    location: str | None = None,
    max_results: int = 20,
) -> List[RawItem]:
    """Run one hazard query on every connector able to search by term."""
    searchable = [c for c in connectors if c.hazard_query(hazard, location or c.default_location) is not None]
    if not searchable:
        return []
    per_connector = max(1, math.ceil(max_results / len(searchable)))
    results = await asyncio.gather(
        *(c.search_hazard(hazard, location, per_connector) for c in searchable),
        return_exceptions=True,
    )
    batches: list[list[RawItem]] = []
    for connector, result in zip(searchable, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            _log.warning("Hazard search on %s failed: %s", connector.source, result)
            continue
        batches.append(list(result))
    return merge_items(batches, max_results)
