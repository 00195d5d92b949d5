"""Pydantic models for connector outputs, classified items and hotspots."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HazardLabel(str, Enum):
    TSUNAMI = "Tsunami"
    CYCLONE = "Cyclone"
    STORM_SURGE = "StormSurge"
    HIGH_WAVES = "HighWaves"
    FLOOD = "Flood"
    LANDSLIDE = "Landslide"
    EARTHQUAKE = "Earthquake"
    COASTAL_EROSION = "CoastalErosion"
    OTHER = "Other"


class EntityType(str, Enum):
    LOCATION = "Location"
    PERSON = "Person"
    ORGANIZATION = "Organization"
    HAZARD = "Hazard"
    NUMBER = "Number"


class Sentiment(str, Enum):
    POSITIVE = "Positive"
    NEGATIVE = "Negative"
    NEUTRAL = "Neutral"


class AuthorityStatus(str, Enum):
    DISABLED = "disabled"
    VERIFIED = "verified"
    NOT_VERIFIED = "notVerified"
    ERROR = "error"


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class Engagement(BaseModel):
    """Native engagement counters; ``None`` marks a counter as unknown."""

    model_config = ConfigDict(frozen=True)

    likes: int | None = None
    shares: int | None = None
    comments: int | None = None
    views: int | None = None

    @field_validator("likes", "shares", "comments", "views")
    @classmethod
    def clamp_counter(cls, value: int | None) -> int | None:
        # Counters never go below zero.
        return None if value is None else max(0, value)

    @property
    def is_known(self) -> bool:
        return any(v is not None for v in (self.likes, self.shares, self.comments))

    @property
    def total(self) -> int:
        return sum(v for v in (self.likes, self.shares, self.comments) if v is not None)


class RawItem(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    source: str
    author: str = "unknown"
    text: str = ""
    timestamp: str | None = None
    url: str | None = None
    language: str | None = None
    coordinate: Coordinate | None = None
    location_hint: str | None = None
    engagement: Engagement = Field(default_factory=Engagement)

    @field_validator("id")
    @classmethod
    def validate_id(cls, value: str) -> str:
        cleaned = str(value).strip()
        if not cleaned:
            raise ValueError("Item id must not be empty.")
        return cleaned


class Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    type: EntityType
    confidence: float = Field(ge=0, le=1)
    offset: int = Field(ge=0)


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: HazardLabel
    confidence: float = Field(ge=0, le=1)
    method: Literal["remote", "multilingual", "secondary", "keyword"] = "keyword"
    all_scores: dict[str, float] = Field(default_factory=dict)


class VerificationMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    delayed_upload: bool = False
    location_match: bool | None = None
    authority_status: AuthorityStatus = AuthorityStatus.DISABLED
    distance_km: float | None = None


class ClassifiedItem(RawItem):
    hazard_label: HazardLabel
    confidence: float = Field(ge=0, le=1)
    classification_method: str = "keyword"
    entities: List[Entity] = Field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    verification: VerificationMetadata = Field(default_factory=VerificationMetadata)
    priority_score: float = Field(ge=0)
    processed_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class Hotspot(BaseModel):
    cell: tuple[int, int]
    count: int
    total_weight: float
    severity_sum: float
    hazard_labels: List[HazardLabel] = Field(default_factory=list)
    representative: Coordinate

    @property
    def average_weight(self) -> float:
        return self.total_weight / self.count if self.count else 0.0

    @property
    def average_severity(self) -> float:
        return self.severity_sum / self.count if self.count else 0.0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    POLLING = "polling"
    FAILED = "failed"
