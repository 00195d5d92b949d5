import asyncio

import pytest

from hazard_intel.classification import (
    ClassifierUnavailable,
    HazardClassifier,
    HuggingFaceZeroShot,
    SecondaryStubClassifier,
    ZeroShotClassifier,
    analyze_sentiment,
    classification_from_zero_shot,
    derive_engagement,
    extract_entities,
    keyword_classify,
)
from hazard_intel.models import EntityType, HazardLabel, RawItem, Sentiment
from hazard_intel.rate_limit import ProviderError, RequestScheduler

HINDI_FLOOD = "\u092c\u093e\u0922\u093c flood in Patna"


class FixedZeroShot(ZeroShotClassifier):
    def __init__(self, labels, scores) -> None:
        self.response = {"labels": labels, "scores": scores}
        self.calls = 0

    async def zero_shot(self, text, candidate_labels):
        self.calls += 1
        return self.response


class FailingZeroShot(ZeroShotClassifier):
    def __init__(self) -> None:
        self.calls = 0

    async def zero_shot(self, text, candidate_labels):
        self.calls += 1
        raise ClassifierUnavailable("model loading")


def test_keyword_classify_counts_hits_and_caps_confidence() -> None:
    result = keyword_classify("Tsunami warning issued; tidal wave expected")
    assert result.label == HazardLabel.TSUNAMI
    assert result.confidence == pytest.approx(0.6)
    assert result.method == "keyword"

    many = keyword_classify("flood flooding water level overflow inundation")
    assert many.label == HazardLabel.FLOOD
    assert many.confidence == pytest.approx(0.9)


def test_keyword_classify_ties_keep_table_order_and_default_other() -> None:
    assert keyword_classify("landslide after the tremor").label == HazardLabel.LANDSLIDE
    default = keyword_classify("calm day at the beach")
    assert default.label == HazardLabel.OTHER
    assert default.confidence == pytest.approx(0.1)


def test_failing_remote_equals_keyword_fallback() -> None:
    texts = [
        "Cyclone approaching Odisha coast with strong wind",
        "Massive earthquake felt in Gujarat",
        "",
        "nothing to see here",
    ]
    classifier = HazardClassifier(FailingZeroShot())
    for text in texts:
        assert asyncio.run(classifier.classify(text)) == keyword_classify(text)


def test_remote_result_is_canonicalized() -> None:
    remote = FixedZeroShot(["Storm Surge", "Flood", "Other"], [0.82, 0.1, 0.08])
    result = asyncio.run(HazardClassifier(remote).classify("Sea water entering streets"))
    assert result.label == HazardLabel.STORM_SURGE
    assert result.confidence == pytest.approx(0.82)
    assert result.method == "remote"
    assert result.all_scores["Flood"] == pytest.approx(0.1)


def test_unmappable_remote_label_falls_back() -> None:
    remote = FixedZeroShot(["Volcano"], [0.99])
    text = "flood waters rising"
    assert asyncio.run(HazardClassifier(remote).classify(text)) == keyword_classify(text)


def test_non_primary_language_skips_remote_when_multilingual_disabled() -> None:
    remote = FixedZeroShot(["Tsunami"], [0.9])
    result = asyncio.run(HazardClassifier(remote).classify(HINDI_FLOOD))
    assert remote.calls == 0
    assert result == keyword_classify(HINDI_FLOOD)


def test_multilingual_then_secondary_then_keyword() -> None:
    multilingual = FailingZeroShot()
    classifier = HazardClassifier(
        multilingual=multilingual,
        secondary=SecondaryStubClassifier(),
        multilingual_enabled=True,
    )
    result = asyncio.run(classifier.classify(HINDI_FLOOD))
    assert multilingual.calls == 1
    assert result.label == HazardLabel.OTHER
    assert result.confidence == pytest.approx(0.6)
    assert result.method == "secondary"

    no_secondary = HazardClassifier(multilingual=FailingZeroShot(), multilingual_enabled=True)
    assert asyncio.run(no_secondary.classify(HINDI_FLOOD)) == keyword_classify(HINDI_FLOOD)


def test_huggingface_zero_shot_goes_through_scheduler(clock) -> None:
    requests: list = []

    async def dispatch(request):
        requests.append(request)
        return [{"labels": ["Cyclone", "Flood"], "scores": [0.7, 0.3]}]

    scheduler = RequestScheduler({"huggingface": dispatch}, clock=clock, sleep=clock.sleep)
    classifier = HazardClassifier(HuggingFaceZeroShot(scheduler))
    result = asyncio.run(classifier.classify("Cyclone Biparjoy nears Kutch"))

    assert result.label == HazardLabel.CYCLONE
    assert result.method == "remote"
    assert requests[0]["model"] == "facebook/bart-large-mnli"
    assert "Storm Surge" in requests[0]["payload"]["parameters"]["candidate_labels"]


def test_huggingface_provider_failure_falls_back(clock) -> None:
    async def dispatch(request):
        raise ProviderError("huggingface", "HTTP 503", status_code=503)

    scheduler = RequestScheduler({"huggingface": dispatch}, max_retries=1, clock=clock, sleep=clock.sleep)
    text = "Flood alert for Kerala"
    result = asyncio.run(HazardClassifier(HuggingFaceZeroShot(scheduler)).classify(text))
    assert result == keyword_classify(text)


def test_classification_confidence_is_clamped() -> None:
    result = classification_from_zero_shot({"labels": ["HighWaves"], "scores": [1.7]}, "remote")
    assert result.label == HazardLabel.HIGH_WAVES
    assert result.confidence == 1.0
    with pytest.raises(ClassifierUnavailable):
        classification_from_zero_shot({"labels": [], "scores": []}, "remote")


def test_extract_entities_gazetteer_and_numbers() -> None:
    text = "Cyclone hits Chennai and Hitec City; NDMA says 120 families moved, 120 homes lost in Chennai near Kochi"
    entities = extract_entities(text)
    by_text = {e.text: e for e in entities}

    assert by_text["Chennai"].type == EntityType.LOCATION
    assert by_text["Hitec City"].type == EntityType.LOCATION
    assert "Kochi" not in by_text
    assert by_text["NDMA"].type == EntityType.ORGANIZATION
    assert by_text["cyclone"].type == EntityType.HAZARD
    assert by_text["120"].type == EntityType.NUMBER
    assert by_text["120"].confidence == pytest.approx(0.6)
    assert by_text["Chennai"].confidence == pytest.approx(0.8)
    assert sum(1 for e in entities if e.text == "120") == 1
    assert sum(1 for e in entities if e.text == "Chennai") == 1
    assert [e.offset for e in entities] == sorted(e.offset for e in entities)


def test_extract_entities_respects_word_boundaries() -> None:
    assert extract_entities("What a goal!") == []
    assert [e.text for e in extract_entities("Rains lash Tamil   Nadu")] == ["Tamil Nadu"]


def test_analyze_sentiment() -> None:
    assert analyze_sentiment("Families rescued and safe") == Sentiment.POSITIVE
    assert analyze_sentiment("Disaster: heavy damage and loss") == Sentiment.NEGATIVE
    assert analyze_sentiment("rescued but damage") == Sentiment.NEUTRAL


def test_derive_engagement_passes_native_counters_and_keeps_unknowns() -> None:
    engagement = derive_engagement({"likes": 10, "retweets": "4", "views": 300})
    assert engagement.likes == 10
    assert engagement.shares == 4
    assert engagement.comments is None
    assert engagement.views == 300
    assert engagement.total == 14

    unknown = derive_engagement({"text": "no counters"})
    assert not unknown.is_known
    assert unknown.total == 0

    nested = derive_engagement({"engagement": {"likes": 2, "replies": 1}})
    assert (nested.likes, nested.comments) == (2, 1)

    item = RawItem(id="t1", source="twitter", engagement={"likes": 5})
    assert derive_engagement(item).likes == 5


def test_caller_timeout_does_not_cancel_shared_remote_request(clock) -> None:
    text = "Flood waters rising near the river"

    async def scenario():
        release = asyncio.Event()
        calls: list = []

        async def dispatch(request):
            calls.append(request)
            await release.wait()
            return {"labels": ["Flood"], "scores": [0.8]}

        scheduler = RequestScheduler({"huggingface": dispatch}, clock=clock, sleep=clock.sleep)
        impatient = HazardClassifier(HuggingFaceZeroShot(scheduler, timeout_seconds=0.01))
        patient = HazardClassifier(HuggingFaceZeroShot(scheduler, timeout_seconds=5.0))

        first = asyncio.ensure_future(impatient.classify(text))
        second = asyncio.ensure_future(patient.classify(text))
        fallback = await first
        release.set()
        return fallback, await second, calls

    fallback, shared, calls = asyncio.run(scenario())

    assert fallback == keyword_classify(text)
    assert shared.method == "remote"
    assert shared.label == HazardLabel.FLOOD
    assert len(calls) == 1
