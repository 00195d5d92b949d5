"""Cycle orchestration for collection, classification, alerting and persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import ClassifiedItem, Hotspot
from .spatial import compute_hotspots

if TYPE_CHECKING:
    from .pipeline import HazardPipeline

_log = logging.getLogger(__name__)


@dataclass
class CycleResult:
    cycle_id: int
    summary: str
    connector_count: int
    item_count: int
    alert_count: int
    items: list[ClassifiedItem]
    alerts: list[dict]
    hotspots: list[Hotspot]
    connector_metrics: list[dict]


async def run_cycle_once(
    pipeline: "HazardPipeline",
    *,
    location: str | None = None,
    max_results: int | None = None,
) -> CycleResult:
    collected = await pipeline.collect(location, max_results)
    items = await pipeline.process_batch(collected.items)
    alerts = pipeline.alert_trigger.evaluate(items)
    hotspots = compute_hotspots(items, pipeline.config.hotspot_cell_size)

    failed = len(collected.failed_connectors)
    summary = (
        f"{len(items)} item(s) from {len(pipeline.connectors) - failed}/{len(pipeline.connectors)} "
        f"connector(s); {len(alerts)} alert(s); {len(hotspots)} hotspot(s)"
    )

    cycle_id = 0
    if pipeline.store is not None:
        cycle_id = pipeline.store.record_cycle(
            connector_count=len(pipeline.connectors),
            item_count=len(items),
            alert_count=len(alerts),
            hotspot_count=len(hotspots),
            summary=summary,
        )
        pipeline.store.persist_items(items, cycle_id=cycle_id)

    _log.info("Cycle %s: %s", cycle_id, summary)
    return CycleResult(
        cycle_id=cycle_id,
        summary=summary,
        connector_count=len(pipeline.connectors),
        item_count=len(items),
        alert_count=len(alerts),
        items=items,
        alerts=alerts,
        hotspots=hotspots,
        connector_metrics=collected.connector_metrics,
    )
