"""Threshold alerting over scored items and the alert output contract."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Protocol

from .models import ClassifiedItem

_log = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 12.0
# Items between this share of the threshold and the threshold are "high".
HIGH_SECTION_RATIO = 0.75


class AlertStore(Protocol):
    def save_alert(self, alert: Dict[str, Any]) -> Any: ...


def alert_source(item: ClassifiedItem) -> str:
    return "report" if item.source == "report" else f"social:{item.source}"


def build_alert_record(item: ClassifiedItem, threshold: float) -> Dict[str, Any]:
    location = item.location_hint
    if location is None and item.coordinate is not None:
        location = f"{item.coordinate.lat:.4f},{item.coordinate.lon:.4f}"
    return {
        "type": item.hazard_label.value,
        "priority": item.priority_score,
        "reason": f"priority {item.priority_score:.1f} >= threshold {threshold:.1f}",
        "source": alert_source(item),
        "created_at": datetime.now(timezone.utc).isoformat(),
        "payload": {
            "id": item.id,
            "text": item.text,
            "timestamp": item.timestamp,
            "location": location,
        },
    }


class AlertTrigger:
    """Emit one alert per item at or above ``threshold``; never twice for the same item."""

    def __init__(self, threshold: float = DEFAULT_ALERT_THRESHOLD, store: AlertStore | None = None) -> None:
        self.threshold = threshold
        self.store = store
        self._alerted: set[tuple[str, str]] = set()

    def evaluate(self, items: Iterable[ClassifiedItem]) -> List[Dict[str, Any]]:
        emitted: list[Dict[str, Any]] = []
        for item in items:
            if item.priority_score < self.threshold:
                continue
            key = (item.source, item.id)
            if key in self._alerted:
                continue
            record = build_alert_record(item, self.threshold)
            if self.store is not None:
                self.store.save_alert(record)
            # Only marked once persisted so a failed save is retried on replay.
            self._alerted.add(key)
            emitted.append(record)
        if emitted:
            _log.info("Emitted %d alert(s) at threshold %.1f", len(emitted), self.threshold)
        return emitted


def build_alert_contract(
    items: List[ClassifiedItem],
    interval_minutes: int,
    threshold: float = DEFAULT_ALERT_THRESHOLD,
) -> dict:
    ranked = sorted(items, key=lambda i: i.priority_score, reverse=True)
    critical = [_item_payload(i) for i in ranked if i.priority_score >= threshold]
    high = [
        _item_payload(i)
        for i in ranked
        if threshold * HIGH_SECTION_RATIO <= i.priority_score < threshold
    ]
    watchlist = [_item_payload(i) for i in ranked if i.priority_score < threshold * HIGH_SECTION_RATIO]

    source_log = [
        {"id": i.id, "source": i.source, "url": i.url, "timestamp": i.timestamp}
        for i in items
    ]
    next_check_time = (datetime.now(timezone.utc) + timedelta(minutes=interval_minutes)).isoformat()

    return {
        "critical_alerts": critical,
        "high_priority": high,
        "watchlist_signals": watchlist,
        "source_log": source_log,
        "next_check_time": next_check_time,
    }


def _item_payload(item: ClassifiedItem) -> dict:
    return {
        "id": item.id,
        "source": item.source,
        "hazard_label": item.hazard_label.value,
        "confidence": item.confidence,
        "classification_method": item.classification_method,
        "priority_score": item.priority_score,
        "sentiment": item.sentiment.value,
        "text": item.text,
        "url": item.url,
        "timestamp": item.timestamp,
        "location": item.location_hint,
        "coordinate": item.coordinate.model_dump() if item.coordinate else None,
        "entities": [e.model_dump(mode="json") for e in item.entities],
    }
