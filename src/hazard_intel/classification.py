"""Hazard classification, entity extraction, sentiment and engagement normalization.

``HazardClassifier.classify`` always produces a label.  The remote
zero-shot model is tried first for primary-language text; multilingual
models for supported non-primary scripts when enabled; and the
deterministic keyword table whenever a remote path is unavailable.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping

from .config import canonicalize_hazard_label
from .models import Classification, Engagement, Entity, EntityType, HazardLabel, RawItem, Sentiment
from .rate_limit import RequestScheduler
from .taxonomy import (
    CANDIDATE_LABELS,
    GAZETTEER,
    HAZARD_KEYWORDS,
    NEGATIVE_WORDS,
    NUMBER_PATTERN,
    POSITIVE_WORDS,
    PRIMARY_LANGUAGE,
    SUPPORTED_LANGUAGES,
    count_keyword_hits,
    detect_language,
    find_term,
)

_log = logging.getLogger(__name__)

ZERO_SHOT_MODEL = "facebook/bart-large-mnli"
MULTILINGUAL_MODEL = "joeddav/xlm-roberta-large-xnli"

KEYWORD_CONFIDENCE_PER_HIT = 0.3
KEYWORD_CONFIDENCE_CAP = 0.9
DEFAULT_LABEL_CONFIDENCE = 0.1

GAZETTEER_CONFIDENCE = 0.8
NUMBER_CONFIDENCE = 0.6


class ClassifierUnavailable(RuntimeError):
    pass


# ── Remote classifiers ───────────────────────────────────────────────


class ZeroShotClassifier(ABC):
    """Contract: ``{text, candidate_labels}`` -> ``{labels, scores}`` sorted descending."""

    @abstractmethod
    async def zero_shot(self, text: str, candidate_labels: list[str]) -> dict[str, list]:
        """Return ranked labels and scores or raise on any failure."""


class HuggingFaceZeroShot(ZeroShotClassifier):
    def __init__(
        self,
        scheduler: RequestScheduler,
        *,
        model: str = ZERO_SHOT_MODEL,
        timeout_seconds: float = 10.0,
        source: str = "huggingface",
    ) -> None:
        self._scheduler = scheduler
        self.model = model
        self._timeout = timeout_seconds
        self._source = source

    async def zero_shot(self, text: str, candidate_labels: list[str]) -> dict[str, list]:
        request = {
            "model": self.model,
            "payload": {
                "inputs": text,
                "parameters": {"candidate_labels": list(candidate_labels), "multi_label": False},
            },
        }
        try:
            response = await asyncio.wait_for(
                self._scheduler.enqueue(self._source, request),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ClassifierUnavailable(f"{self.model} timed out") from exc
        # Some endpoints wrap the result in a one-element list.
        if isinstance(response, list) and response:
            response = response[0]
        if not isinstance(response, dict) or not response.get("labels"):
            raise ClassifierUnavailable(f"{self.model} returned an unexpected payload")
        return {"labels": list(response["labels"]), "scores": list(response.get("scores") or [])}


class SecondaryStubClassifier(ZeroShotClassifier):
    """Placeholder regional-language model; always answers Other@0.6."""

    async def zero_shot(self, text: str, candidate_labels: list[str]) -> dict[str, list]:
        return {"labels": ["Other"], "scores": [0.6]}


def classification_from_zero_shot(response: Mapping[str, Any], method: str) -> Classification:
    labels = list(response.get("labels") or [])
    scores = list(response.get("scores") or [])
    if not labels:
        raise ClassifierUnavailable("empty label list")
    label = canonicalize_hazard_label(str(labels[0]))
    if label is None:
        raise ClassifierUnavailable(f"unknown label {labels[0]!r}")
    try:
        top_score = float(scores[0]) if scores else 0.5
    except (TypeError, ValueError) as exc:
        raise ClassifierUnavailable(f"non-numeric score {scores[0]!r}") from exc
    all_scores: dict[str, float] = {}
    for raw_label, raw_score in zip(labels, scores):
        canonical = canonicalize_hazard_label(str(raw_label))
        if canonical is not None and canonical.value not in all_scores:
            all_scores[canonical.value] = min(max(float(raw_score), 0.0), 1.0)
    return Classification(
        label=label,
        confidence=min(max(top_score, 0.0), 1.0),
        method=method,
        all_scores=all_scores,
    )


# ── Deterministic helpers ────────────────────────────────────────────


def keyword_classify(text: str) -> Classification:
    best_label = HazardLabel.OTHER
    best_confidence = DEFAULT_LABEL_CONFIDENCE
    for label, keywords in HAZARD_KEYWORDS.items():
        hits = count_keyword_hits(text, keywords)
        confidence = min(KEYWORD_CONFIDENCE_PER_HIT * hits, KEYWORD_CONFIDENCE_CAP)
        if confidence > best_confidence:
            best_label, best_confidence = label, confidence
    return Classification(label=best_label, confidence=round(best_confidence, 4), method="keyword")


def extract_entities(text: str) -> list[Entity]:
    entities: list[Entity] = []
    seen: set[str] = set()
    for entity_type, terms in GAZETTEER.items():
        for term in terms:
            key = term.lower()
            if key in seen:
                continue
            offset = find_term(text, term)
            if offset < 0:
                continue
            seen.add(key)
            entities.append(Entity(text=term, type=entity_type, confidence=GAZETTEER_CONFIDENCE, offset=offset))

    for match in NUMBER_PATTERN.finditer(text or ""):
        token = match.group(0)
        if token.lower() in seen:
            continue
        seen.add(token.lower())
        entities.append(Entity(text=token, type=EntityType.NUMBER, confidence=NUMBER_CONFIDENCE, offset=match.start()))

    return sorted(entities, key=lambda e: e.offset)


def analyze_sentiment(text: str) -> Sentiment:
    positive = count_keyword_hits(text, POSITIVE_WORDS)
    negative = count_keyword_hits(text, NEGATIVE_WORDS)
    if positive > negative:
        return Sentiment.POSITIVE
    if negative > positive:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def _counter(payload: Mapping[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = payload.get(key)
        if value is None or value == "":
            continue
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            continue
    return None


def derive_engagement(item: RawItem | Mapping[str, Any]) -> Engagement:
    """Pass native counters through; absent counters stay unknown (``None``)."""
    if isinstance(item, RawItem):
        return item.engagement
    nested = item.get("engagement")
    if isinstance(nested, Engagement):
        return nested
    sources = [nested] if isinstance(nested, Mapping) else []
    sources.append(item)
    values: dict[str, int | None] = {"likes": None, "shares": None, "comments": None, "views": None}
    aliases = {
        "likes": ("likes", "like_count"),
        "shares": ("shares", "retweets", "retweet_count"),
        "comments": ("comments", "replies", "reply_count"),
        "views": ("views", "view_count"),
    }
    for field, keys in aliases.items():
        for source in sources:
            value = _counter(source, *keys)
            if value is not None:
                values[field] = value
                break
    return Engagement(**values)


# ── Classifier ───────────────────────────────────────────────────────


class HazardClassifier:
    def __init__(
        self,
        remote: ZeroShotClassifier | None = None,
        *,
        multilingual: ZeroShotClassifier | None = None,
        secondary: ZeroShotClassifier | None = None,
        multilingual_enabled: bool = False,
    ) -> None:
        self.remote = remote
        self.multilingual = multilingual
        self.secondary = secondary
        self.multilingual_enabled = multilingual_enabled

    async def classify(self, text: str) -> Classification:
        text = text or ""
        language = detect_language(text)

        if language == PRIMARY_LANGUAGE:
            result = await self._try(self.remote, text, "remote")
            if result is not None:
                return result
        elif language in SUPPORTED_LANGUAGES and self.multilingual_enabled:
            for classifier, method in ((self.multilingual, "multilingual"), (self.secondary, "secondary")):
                result = await self._try(classifier, text, method)
                if result is not None:
                    return result

        return keyword_classify(text)

    async def _try(self, classifier: ZeroShotClassifier | None, text: str, method: str) -> Classification | None:
        if classifier is None:
            return None
        try:
            response = await classifier.zero_shot(text, CANDIDATE_LABELS)
            return classification_from_zero_shot(response, method)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            _log.warning("%s classifier unavailable, falling back: %s", method, exc)
            return None
