"""Hazard taxonomy, language patterns, gazetteer and keyword matching helpers."""

from __future__ import annotations

import re
from typing import Dict, List

from .models import EntityType, HazardLabel

PRIMARY_LANGUAGE = "en"

# First matching Unicode block wins.
LANGUAGE_PATTERNS: Dict[str, re.Pattern[str]] = {
    "hi": re.compile(r"[\u0900-\u097F]"),
    "te": re.compile(r"[\u0C00-\u0C7F]"),
    "ta": re.compile(r"[\u0B80-\u0BFF]"),
    "ml": re.compile(r"[\u0D00-\u0D7F]"),
    "kn": re.compile(r"[\u0C80-\u0CFF]"),
    "gu": re.compile(r"[\u0A80-\u0AFF]"),
    "bn": re.compile(r"[\u0980-\u09FF]"),
    "pa": re.compile(r"[\u0A00-\u0A7F]"),
    "or": re.compile(r"[\u0B00-\u0B7F]"),
}

SUPPORTED_LANGUAGES = frozenset([PRIMARY_LANGUAGE, *LANGUAGE_PATTERNS])

# Display names sent to zero-shot classifiers as candidate labels.
CANDIDATE_LABELS: List[str] = [
    "Tsunami",
    "Cyclone",
    "Storm Surge",
    "High Waves",
    "Flood",
    "Landslide",
    "Earthquake",
    "Coastal Erosion",
    "Other",
]

# Table order decides ties in the keyword fallback.
HAZARD_KEYWORDS: Dict[HazardLabel, List[str]] = {
    HazardLabel.TSUNAMI: ["tsunami", "tidal wave", "sea wave", "ocean wave"],
    HazardLabel.CYCLONE: ["cyclone", "hurricane", "typhoon", "storm", "wind"],
    HazardLabel.STORM_SURGE: ["storm surge", "tidal surge", "coastal surge"],
    HazardLabel.HIGH_WAVES: ["high waves", "big waves", "large waves", "wave height"],
    HazardLabel.FLOOD: ["flood", "flooding", "water level", "overflow", "inundation"],
    HazardLabel.LANDSLIDE: ["landslide", "landslip", "slope failure", "rockfall"],
    HazardLabel.EARTHQUAKE: ["earthquake", "tremor", "seismic", "quake"],
    HazardLabel.COASTAL_EROSION: ["erosion", "coastal erosion", "shoreline retreat"],
}

# One provider query per hazard family.
HAZARD_QUERY_TERMS: List[str] = [
    'tsunami OR "tidal wave" OR "sea surge"',
    "cyclone OR hurricane OR typhoon",
    'flood OR flooding OR "heavy rain"',
    "earthquake OR tremor OR seismic",
    'landslide OR "slope failure"',
    'storm OR "storm surge" OR "high waves"',
]

HAZARD_SEARCH_TERMS: List[str] = ["tsunami", "cyclone", "flood", "earthquake", "storm", "disaster"]

HAZARD_QUERIES_BY_TYPE: Dict[str, str] = {
    "tsunami": 'tsunami OR "tidal wave" OR "sea surge"',
    "cyclone": "cyclone OR hurricane OR typhoon",
    "flood": 'flood OR flooding OR "heavy rain"',
    "earthquake": "earthquake OR tremor OR seismic",
    "landslide": 'landslide OR "slope failure"',
    "storm": 'storm OR "storm surge" OR "high waves"',
}

NEWS_HAZARD_KEYWORDS: List[str] = [
    "tsunami", "cyclone", "hurricane", "typhoon", "flood", "flooding",
    "earthquake", "tremor", "landslide", "storm", "disaster", "emergency",
    "evacuation", "warning", "alert", "surge", "waves",
]

GAZETTEER: Dict[EntityType, List[str]] = {
    EntityType.LOCATION: [
        "Mumbai", "Delhi", "Bengaluru", "Hyderabad", "Ahmedabad", "Chennai", "Kolkata", "Surat",
        "Pune", "Jaipur", "Lucknow", "Kanpur", "Nagpur", "Indore", "Thane", "Bhopal",
        "Visakhapatnam", "Pimpri", "Patna", "Vadodara",
        "Goa", "Kerala", "Tamil Nadu", "Andhra Pradesh", "Odisha", "West Bengal", "Gujarat",
        "Maharashtra", "Puducherry", "Daman", "Diu", "Lakshadweep", "Andaman", "Nicobar",
        "Sundarbans", "Konkan", "Coromandel", "Malabar", "Kutch", "Gachibowli", "Hitec City",
    ],
    EntityType.PERSON: [
        "Sree", "Sayoni", "Manas", "Harshini", "Rajesh", "Priya", "Amit", "Sneha", "Vikram", "Anita",
    ],
    EntityType.ORGANIZATION: [
        "TV9 Telugu", "ABP News", "NDTV", "CNN-IBN", "Times Now", "Republic TV", "Aaj Tak",
        "DD News", "India Today", "Zee News", "News18", "ANI",
        "NDMA", "IMD", "INCOIS", "Coast Guard", "ISRO", "DRDO", "NIOT",
    ],
    EntityType.HAZARD: [
        "tsunami", "cyclone", "storm surge", "high waves", "flood", "landslide", "earthquake",
        "storm", "typhoon", "tidal wave", "sea level rise", "coastal erosion", "king tide",
    ],
}

POSITIVE_WORDS: List[str] = ["safe", "rescued", "help", "support", "recovery", "better"]
NEGATIVE_WORDS: List[str] = ["danger", "crisis", "emergency", "disaster", "damage", "loss"]

NUMBER_PATTERN = re.compile(r"\b\d+(?:\.\d+)?\b")


def normalize_text(value: str) -> str:
    return " ".join(value.casefold().split())


def detect_language(text: str) -> str:
    for language, pattern in LANGUAGE_PATTERNS.items():
        if pattern.search(text or ""):
            return language
    return PRIMARY_LANGUAGE


def count_keyword_hits(text: str, keywords: List[str]) -> int:
    """Count keywords occurring anywhere in ``text`` (substring, case-insensitive)."""
    haystack = (text or "").lower()
    return sum(1 for keyword in keywords if keyword in haystack)


def find_term(text: str, term: str) -> int:
    """Offset of the first word-bounded, case-insensitive occurrence of ``term`` or -1."""
    needle = normalize_text(term)
    if not needle:
        return -1
    # Word-boundary match: keeps "Goa" from matching inside "goal".
    pattern = r"(?<!\w)" + re.escape(needle).replace(r"\ ", r"\s+") + r"(?!\w)"
    match = re.search(pattern, text or "", flags=re.IGNORECASE)
    return match.start() if match else -1


def mentions_hazard(text: str) -> bool:
    return count_keyword_hits(text, NEWS_HAZARD_KEYWORDS) > 0
