from .classification import HazardClassifier, analyze_sentiment, extract_entities, keyword_classify
from .config import PipelineConfig
from .models import ClassifiedItem, Classification, Engagement, HazardLabel, RawItem
from .rate_limit import RequestScheduler
from .scoring import score

__all__ = [
    "PipelineConfig",
    "RawItem",
    "ClassifiedItem",
    "Classification",
    "Engagement",
    "HazardLabel",
    "RequestScheduler",
    "HazardClassifier",
    "keyword_classify",
    "extract_entities",
    "analyze_sentiment",
    "score",
]
