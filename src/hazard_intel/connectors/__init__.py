import logging
from typing import Dict, List

from ..config import PipelineConfig
from ..rate_limit import RequestScheduler
from ..settings import is_source_enabled
from .base import ConnectorError, HazardConnector
from .facebook import FacebookConnector
from .rss import FeedSource, RSSConnector
from .twitter import TwitterConnector
from .youtube import YouTubeConnector

_log = logging.getLogger(__name__)

CONNECTOR_CLASSES: Dict[str, type[HazardConnector]] = {
    "twitter": TwitterConnector,
    "youtube": YouTubeConnector,
    "facebook": FacebookConnector,
    "rss": RSSConnector,
}


def build_connectors(scheduler: RequestScheduler, config: PipelineConfig, dispatchers=None) -> List[HazardConnector]:
    """Instantiate enabled connectors; sources without credentials are left out with a warning."""
    connectors: list[HazardConnector] = []
    for source in config.enabled_sources:
        if not is_source_enabled(source):
            _log.info("Source %s disabled by feature flag", source)
            continue
        if dispatchers is not None and not dispatchers.has_credentials(source):
            _log.warning("Source %s has no credentials configured; skipping", source)
            continue
        connectors.append(CONNECTOR_CLASSES[source](scheduler, default_location=config.default_location))
    return connectors


__all__ = [
    "ConnectorError",
    "HazardConnector",
    "TwitterConnector",
    "YouTubeConnector",
    "FacebookConnector",
    "RSSConnector",
    "FeedSource",
    "CONNECTOR_CLASSES",
    "build_connectors",
]
