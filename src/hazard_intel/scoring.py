"""Deterministic priority scoring for classified hazard items."""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping

from .models import (
    AuthorityStatus,
    Classification,
    Engagement,
    Entity,
    EntityType,
    HazardLabel,
    VerificationMetadata,
)

SEVERITY_WEIGHTS: dict[HazardLabel, int] = {
    HazardLabel.TSUNAMI: 10,
    HazardLabel.EARTHQUAKE: 9,
    HazardLabel.CYCLONE: 8,
    HazardLabel.FLOOD: 7,
    HazardLabel.STORM_SURGE: 6,
    HazardLabel.LANDSLIDE: 5,
    HazardLabel.HIGH_WAVES: 4,
    HazardLabel.COASTAL_EROSION: 3,
    HazardLabel.OTHER: 1,
}

CONFIDENCE_WEIGHT = 5.0
LOCATION_ENTITY_WEIGHT = 2.0
DELAYED_UPLOAD_PENALTY = 2.0
LOCATION_MISMATCH_PENALTY = 3.0
AUTHORITY_ADJUSTMENT = 3.0


def severity_weight(label: HazardLabel | str) -> int:
    try:
        return SEVERITY_WEIGHTS[HazardLabel(label)]
    except ValueError:
        return SEVERITY_WEIGHTS[HazardLabel.OTHER]


def _as_classification(value: Classification | Mapping[str, Any]) -> Classification:
    if isinstance(value, Classification):
        return value
    return Classification.model_validate(dict(value))


def _as_engagement(value: Engagement | Mapping[str, Any] | None) -> Engagement:
    if value is None:
        return Engagement()
    if isinstance(value, Engagement):
        return value
    return Engagement.model_validate(dict(value))


def _as_verification(value: VerificationMetadata | Mapping[str, Any] | None) -> VerificationMetadata:
    if value is None:
        return VerificationMetadata()
    if isinstance(value, VerificationMetadata):
        return value
    return VerificationMetadata.model_validate(dict(value))


def _round_half_up(value: float, digits: int = 1) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def score(
    classification: Classification | Mapping[str, Any],
    entities: Iterable[Entity],
    engagement: Engagement | Mapping[str, Any] | None,
    verification: VerificationMetadata | Mapping[str, Any] | None = None,
) -> float:
    """Combine classification, entities, engagement and verification into a priority ≥ 0.

    Pure: the same inputs always give the same score.  Unknown engagement
    counters contribute nothing; an unknown location match is not penalized.
    """
    cls = _as_classification(classification)
    eng = _as_engagement(engagement)
    ver = _as_verification(verification)

    total = float(severity_weight(cls.label))
    total += cls.confidence * CONFIDENCE_WEIGHT
    total += LOCATION_ENTITY_WEIGHT * sum(1 for e in entities if e.type == EntityType.LOCATION)
    total += math.log10(1 + eng.total)

    if ver.delayed_upload:
        total -= DELAYED_UPLOAD_PENALTY
    if ver.location_match is False:
        total -= LOCATION_MISMATCH_PENALTY
    if ver.authority_status == AuthorityStatus.VERIFIED:
        total += AUTHORITY_ADJUSTMENT
    elif ver.authority_status == AuthorityStatus.NOT_VERIFIED:
        total -= AUTHORITY_ADJUSTMENT

    return _round_half_up(max(0.0, total))
