"""Pipeline configuration schema and validation using pydantic."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import HazardLabel

KNOWN_SOURCES = ("huggingface", "twitter", "youtube", "facebook", "rss")

DEFAULT_REQUESTS_PER_MINUTE: Dict[str, int] = {
    "huggingface": 30,
    "twitter": 300,
    "youtube": 100,
    "facebook": 100,
    "rss": 60,
}

FALLBACK_REQUESTS_PER_MINUTE = 60

_HAZARD_LABEL_ALIAS_MAP = {
    "tsunami": HazardLabel.TSUNAMI,
    "tidal wave": HazardLabel.TSUNAMI,
    "cyclone": HazardLabel.CYCLONE,
    "cyclones": HazardLabel.CYCLONE,
    "hurricane": HazardLabel.CYCLONE,
    "typhoon": HazardLabel.CYCLONE,
    "storm surge": HazardLabel.STORM_SURGE,
    "stormsurge": HazardLabel.STORM_SURGE,
    "high waves": HazardLabel.HIGH_WAVES,
    "highwaves": HazardLabel.HIGH_WAVES,
    "flood": HazardLabel.FLOOD,
    "floods": HazardLabel.FLOOD,
    "flooding": HazardLabel.FLOOD,
    "landslide": HazardLabel.LANDSLIDE,
    "landslides": HazardLabel.LANDSLIDE,
    "earthquake": HazardLabel.EARTHQUAKE,
    "earthquakes": HazardLabel.EARTHQUAKE,
    "quake": HazardLabel.EARTHQUAKE,
    "coastal erosion": HazardLabel.COASTAL_EROSION,
    "coastalerosion": HazardLabel.COASTAL_EROSION,
    "erosion": HazardLabel.COASTAL_EROSION,
    "other": HazardLabel.OTHER,
}


def canonicalize_hazard_label(value: str) -> HazardLabel | None:
    cleaned = str(value or "").strip().lower()
    if not cleaned:
        return None
    # "StormSurge" -> "storm surge", "high_waves" -> "high waves"
    spaced = re.sub(r"(?<=[a-z])(?=[A-Z])", " ", str(value).strip()).lower()
    key = re.sub(r"\s+", " ", re.sub(r"[_/\-]+", " ", spaced)).strip()
    return _HAZARD_LABEL_ALIAS_MAP.get(key) or _HAZARD_LABEL_ALIAS_MAP.get(cleaned)


class PipelineConfig(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    requests_per_minute: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_REQUESTS_PER_MINUTE))
    cache_ttl_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_delay_seconds: float = Field(default=0.8, ge=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    hotspot_cell_size: float = Field(default=0.05, gt=0, le=10)
    alert_threshold: float = Field(default=12.0, ge=0)
    verification_max_delay_hours: float = Field(default=24.0, gt=0)
    verification_max_distance_km: float = Field(default=5.0, gt=0)
    multilingual_enabled: bool = False
    queue_flush_interval_seconds: float = Field(default=10.0, gt=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    cycle_interval_minutes: int = Field(default=5, ge=1, le=1440)
    enabled_sources: List[str] = Field(default_factory=lambda: ["twitter", "youtube", "facebook", "rss"])
    default_location: str = "India"
    max_results: int = Field(default=100, ge=1, le=1000)

    @field_validator("requests_per_minute")
    @classmethod
    def validate_requests_per_minute(cls, value: Dict[str, int]) -> Dict[str, int]:
        merged = dict(DEFAULT_REQUESTS_PER_MINUTE)
        for source, rpm in value.items():
            key = source.strip().lower()
            if int(rpm) < 1:
                raise ValueError(f"requests_per_minute for {key!r} must be at least 1.")
            merged[key] = int(rpm)
        return merged

    @field_validator("enabled_sources")
    @classmethod
    def validate_enabled_sources(cls, value: List[str]) -> List[str]:
        cleaned: list[str] = []
        invalid: list[str] = []
        for source in value:
            key = source.strip().lower()
            if not key:
                continue
            if key not in KNOWN_SOURCES or key == "huggingface":
                invalid.append(key)
            elif key not in cleaned:
                cleaned.append(key)
        if invalid:
            raise ValueError(f"Invalid content source(s): {', '.join(sorted(set(invalid)))}")
        return cleaned

    def rpm_for(self, source: str) -> int:
        return int(self.requests_per_minute.get(source, FALLBACK_REQUESTS_PER_MINUTE))


def default_config_path() -> Path:
    return Path.home() / ".hazard-intel" / "pipeline_config.json"


def load_pipeline_config(path: Path | None = None) -> PipelineConfig:
    file_path = path or default_config_path()
    if not file_path.exists():
        return PipelineConfig()
    payload = json.loads(file_path.read_text(encoding="utf-8"))
    return PipelineConfig.model_validate(payload)


def save_pipeline_config(config: PipelineConfig, path: Path | None = None) -> Path:
    file_path = path or default_config_path()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(json.dumps(config.model_dump(), indent=2), encoding="utf-8")
    return file_path
