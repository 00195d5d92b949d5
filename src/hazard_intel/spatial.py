"""GeoJSON views over classified items: points, heat weights and grid hotspots.

All functions are pure and skip items without a coordinate.  Coordinates
are emitted in GeoJSON order, ``[lon, lat]``.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Literal

from .models import ClassifiedItem, Coordinate, HazardLabel, Hotspot
from .scoring import severity_weight

MIN_HEAT_WEIGHT = 0.1
PRIORITY_WEIGHT = 0.4
ENGAGEMENT_WEIGHT = 0.6

Representative = Literal["first", "centroid"]


def _located(items: Iterable[ClassifiedItem]) -> List[ClassifiedItem]:
    return [item for item in items if item.coordinate is not None]


def _feature(coordinate: Coordinate, properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "properties": properties,
        "geometry": {"type": "Point", "coordinates": [coordinate.lon, coordinate.lat]},
    }


def _collection(features: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": features}


def heat_weight(item: ClassifiedItem) -> float:
    raw = PRIORITY_WEIGHT * item.priority_score + ENGAGEMENT_WEIGHT * math.log10(1 + item.engagement.total)
    return max(MIN_HEAT_WEIGHT, raw)


def to_point_features(items: Iterable[ClassifiedItem]) -> Dict[str, Any]:
    return _collection(
        [
            _feature(
                item.coordinate,
                {
                    "id": item.id,
                    "hazard_label": item.hazard_label.value,
                    "priority_score": item.priority_score,
                    "sentiment": item.sentiment.value,
                    "source": item.source,
                    "timestamp": item.timestamp or item.processed_at,
                },
            )
            for item in _located(items)
        ]
    )


def to_heat_features(items: Iterable[ClassifiedItem]) -> Dict[str, Any]:
    return _collection(
        [
            _feature(item.coordinate, {"weight": heat_weight(item), "hazard_label": item.hazard_label.value})
            for item in _located(items)
        ]
    )


def grid_cell(coordinate: Coordinate, cell_size: float) -> tuple[int, int]:
    return (math.floor(coordinate.lon / cell_size), math.floor(coordinate.lat / cell_size))


def compute_hotspots(
    items: Iterable[ClassifiedItem],
    cell_size: float = 0.05,
    representative: Representative = "first",
) -> List[Hotspot]:
    """Bucket located items into a ``cell_size``-degree grid, one hotspot per non-empty cell.

    The representative point is the first coordinate seen in the cell, or
    the mean of all coordinates when ``representative="centroid"``.
    """
    if cell_size <= 0:
        raise ValueError("cell_size must be positive")
    if representative not in ("first", "centroid"):
        raise ValueError(f"unknown representative {representative!r}")

    cells: Dict[tuple[int, int], Dict[str, Any]] = {}
    for item in _located(items):
        key = grid_cell(item.coordinate, cell_size)
        cell = cells.get(key)
        if cell is None:
            cell = cells[key] = {
                "count": 0,
                "weight": 0.0,
                "severity": 0.0,
                "labels": set(),
                "first": item.coordinate,
                "sum_lat": 0.0,
                "sum_lon": 0.0,
            }
        cell["count"] += 1
        cell["weight"] += heat_weight(item)
        cell["severity"] += severity_weight(item.hazard_label)
        cell["labels"].add(item.hazard_label)
        cell["sum_lat"] += item.coordinate.lat
        cell["sum_lon"] += item.coordinate.lon

    hotspots: list[Hotspot] = []
    for key, cell in cells.items():
        if representative == "centroid":
            point = Coordinate(lat=cell["sum_lat"] / cell["count"], lon=cell["sum_lon"] / cell["count"])
        else:
            point = cell["first"]
        hotspots.append(
            Hotspot(
                cell=key,
                count=cell["count"],
                total_weight=cell["weight"],
                severity_sum=cell["severity"],
                hazard_labels=sorted(cell["labels"], key=lambda label: label.value),
                representative=point,
            )
        )
    return hotspots


def to_hotspot_features(
    items: Iterable[ClassifiedItem],
    cell_size: float = 0.05,
    representative: Representative = "first",
) -> Dict[str, Any]:
    return _collection(
        [
            _feature(
                hotspot.representative,
                {
                    "count": hotspot.count,
                    "weight": round(hotspot.total_weight, 3),
                    "average_severity": round(hotspot.average_severity, 2),
                    "hazard_labels": [label.value for label in hotspot.hazard_labels],
                },
            )
            for hotspot in compute_hotspots(items, cell_size, representative)
        ]
    )


def dominant_label(hotspot: Hotspot) -> HazardLabel:
    """Most severe label present in a hotspot."""
    return max(hotspot.hazard_labels, key=severity_weight, default=HazardLabel.OTHER)
