"""End-to-end processing: classify, extract, geocode, verify and score raw items."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Sequence

from pydantic import ValidationError

from .alerts import AlertTrigger
from .classification import (
    HazardClassifier,
    HuggingFaceZeroShot,
    MULTILINGUAL_MODEL,
    SecondaryStubClassifier,
    analyze_sentiment,
    derive_engagement,
    extract_entities,
    keyword_classify,
)
from .collect import CollectionResult, fetch_all_hazard_content
from .config import PipelineConfig
from .connectors import HazardConnector, build_connectors
from .database import SQLiteStore
from .dispatch import HttpDispatchers
from .geocoding import Geocoder, GeocodingError
from .models import AuthorityStatus, ClassifiedItem, Coordinate, RawItem, VerificationMetadata
from .rate_limit import RequestScheduler
from .scoring import score
from .settings import is_geocoding_enabled, is_multilingual_enabled, is_secondary_classifier_enabled
from .time_utils import utc_now_iso
from .verification import AuthorityVerifier, CaptureMetadata, build_verification

_log = logging.getLogger(__name__)


def _coordinate(lat: Any, lon: Any) -> Coordinate | None:
    if lat is None or lon is None:
        return None
    try:
        return Coordinate(lat=float(lat), lon=float(lon))
    except (TypeError, ValueError):
        return None


def raw_item_from_payload(payload: Mapping[str, Any], default_source: str = "live") -> RawItem:
    """Normalize a loosely shaped post (live stream, demo feed, report) into a ``RawItem``."""
    coordinate = payload.get("coordinate")
    if coordinate is None:
        coordinate = _coordinate(payload.get("lat"), payload.get("lon", payload.get("lng")))
    return RawItem.model_validate(
        {
            "id": payload.get("id") or f"{default_source}_{uuid.uuid4().hex[:12]}",
            "source": payload.get("source") or payload.get("platform") or default_source,
            "author": payload.get("author") or "unknown",
            "text": payload.get("text") or payload.get("description") or "",
            "timestamp": payload.get("timestamp"),
            "url": payload.get("url"),
            "language": payload.get("language"),
            "coordinate": coordinate,
            "location_hint": payload.get("location_hint") or payload.get("location"),
            "engagement": derive_engagement(payload),
        }
    )


class HazardPipeline:
    def __init__(
        self,
        classifier: HazardClassifier,
        *,
        config: PipelineConfig | None = None,
        connectors: Sequence[HazardConnector] = (),
        geocoder: Geocoder | None = None,
        authority: AuthorityVerifier | None = None,
        store: SQLiteStore | None = None,
        alert_trigger: AlertTrigger | None = None,
        closers: Sequence[Any] = (),
    ) -> None:
        self.config = config or PipelineConfig()
        self.classifier = classifier
        self.connectors = list(connectors)
        self.geocoder = geocoder
        self.authority = authority
        self.store = store
        self.alert_trigger = alert_trigger or AlertTrigger(self.config.alert_threshold, store)
        self._closers = list(closers)

    async def aclose(self) -> None:
        for closer in self._closers:
            await closer.aclose()

    async def process_item(
        self,
        raw: RawItem | Mapping[str, Any],
        verification: VerificationMetadata | None = None,
    ) -> ClassifiedItem:
        item = raw if isinstance(raw, RawItem) else raw_item_from_payload(raw)
        try:
            classification = await self.classifier.classify(item.text)
        except Exception as exc:
            _log.warning("Classification failed for %s/%s: %s", item.source, item.id, exc)
            classification = keyword_classify(item.text)

        entities = extract_entities(item.text)
        coordinate = item.coordinate or await self._geocode(item)
        verification = verification or VerificationMetadata()
        priority = score(classification, entities, item.engagement, verification)

        return ClassifiedItem(
            **item.model_dump(exclude={"coordinate"}),
            coordinate=coordinate,
            hazard_label=classification.label,
            confidence=classification.confidence,
            classification_method=classification.method,
            entities=entities,
            sentiment=analyze_sentiment(item.text),
            verification=verification,
            priority_score=priority,
        )

    async def _geocode(self, item: RawItem) -> Coordinate | None:
        if self.geocoder is None or not item.location_hint:
            return None
        try:
            result = await self.geocoder.geocode(item.location_hint)
        except GeocodingError as exc:
            _log.info("No coordinate for %s/%s (%r): %s", item.source, item.id, item.location_hint, exc)
            return None
        return Coordinate(lat=result.lat, lon=result.lon)

    async def process_batch(self, items: Iterable[RawItem | Mapping[str, Any]]) -> List[ClassifiedItem]:
        return list(await asyncio.gather(*(self.process_item(item) for item in items)))

    async def process_payload(self, payload: Any) -> ClassifiedItem | None:
        """Process an inbound post; malformed payloads are logged and dropped."""
        if not isinstance(payload, Mapping):
            _log.warning("Dropping non-object post payload: %r", payload)
            return None
        try:
            raw = raw_item_from_payload(payload)
        except ValidationError as exc:
            _log.warning("Dropping malformed post payload: %s", exc)
            return None
        return await self.process_item(raw)

    async def process_report(self, report: Mapping[str, Any]) -> ClassifiedItem:
        """Classify and score a field report, including capture-metadata verification."""
        raw = raw_item_from_payload(
            {**report, "source": "report", "timestamp": report.get("timestamp") or utc_now_iso()},
            default_source="report",
        )
        submitted_at = report.get("submitted_at") or raw.timestamp
        capture = CaptureMetadata(
            captured_at=report.get("captured_at"),
            coordinate=_coordinate(report.get("photo_lat"), report.get("photo_lon")),
        )
        authority_status = AuthorityStatus.DISABLED
        if self.authority is not None and raw.coordinate is not None:
            authority_status = await self.authority.verify(raw.coordinate.lat, raw.coordinate.lon, submitted_at)
        verification = build_verification(
            capture,
            submitted_at=submitted_at,
            device_coordinate=raw.coordinate,
            max_delay_hours=self.config.verification_max_delay_hours,
            max_distance_km=self.config.verification_max_distance_km,
            authority_status=authority_status,
        )
        return await self.process_item(raw, verification)

    async def collect(self, location: str | None = None, max_results: int | None = None) -> CollectionResult:
        return await fetch_all_hazard_content(
            self.connectors,
            location or self.config.default_location,
            max_results or self.config.max_results,
        )

    async def run_cycle(self, location: str | None = None, max_results: int | None = None):
        from .cycle import run_cycle_once

        return await run_cycle_once(self, location=location, max_results=max_results)


def build_default_pipeline(
    config: PipelineConfig,
    *,
    db_path: Path | None = None,
    persist: bool = True,
    alert_trigger: AlertTrigger | None = None,
) -> HazardPipeline:
    """Wire dispatchers, scheduler, classifiers, connectors and store from settings and flags."""
    dispatchers = HttpDispatchers(timeout_seconds=config.request_timeout_seconds)
    scheduler = RequestScheduler.from_config(config, dispatchers.as_mapping())

    multilingual_enabled = config.multilingual_enabled or is_multilingual_enabled()
    classifier = HazardClassifier(
        HuggingFaceZeroShot(scheduler, timeout_seconds=config.request_timeout_seconds),
        multilingual=(
            HuggingFaceZeroShot(scheduler, model=MULTILINGUAL_MODEL, timeout_seconds=config.request_timeout_seconds)
            if multilingual_enabled
            else None
        ),
        secondary=SecondaryStubClassifier() if is_secondary_classifier_enabled() else None,
        multilingual_enabled=multilingual_enabled,
    )

    closers: list[Any] = [dispatchers]
    geocoder = None
    if is_geocoding_enabled():
        geocoder = Geocoder(timeout_seconds=config.request_timeout_seconds)
        closers.append(geocoder)
        if not geocoder.configured:
            _log.info("No geocoding API key configured; place hints stay unresolved")
            geocoder = None

    authority = AuthorityVerifier(timeout_seconds=config.request_timeout_seconds)
    store = SQLiteStore(db_path) if persist else None
    return HazardPipeline(
        classifier,
        config=config,
        connectors=build_connectors(scheduler, config, dispatchers),
        geocoder=geocoder,
        authority=authority if authority.enabled else None,
        store=store,
        alert_trigger=alert_trigger or AlertTrigger(config.alert_threshold, store),
        closers=closers,
    )
