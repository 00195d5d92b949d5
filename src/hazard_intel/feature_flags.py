"""Centralized feature-flag loader for pipeline behavior."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

_log = logging.getLogger(__name__)

DEFAULT_FEATURE_FLAGS: dict[str, Any] = {
    "twitter_enabled": True,
    "youtube_enabled": True,
    "facebook_enabled": True,
    "rss_enabled": True,
    "multilingual_classification_enabled": False,
    "secondary_classifier_enabled": False,
    "geocoding_enabled": True,
    "authority_verification_enabled": True,
}


def default_feature_flags_path() -> Path:
    return Path.cwd() / "config" / "feature_flags.json"


def _coerce_flag_value(key: str, value: Any) -> Any:
    default = DEFAULT_FEATURE_FLAGS.get(key)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raw = str(value).strip().lower()
        return raw in {"1", "true", "yes", "on"}
    return value


def load_feature_flags(path: Path | None = None) -> dict[str, Any]:
    flags = dict(DEFAULT_FEATURE_FLAGS)
    candidate = path or default_feature_flags_path()
    if candidate.exists():
        try:
            payload = json.loads(candidate.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            _log.warning("Ignoring unreadable feature flag file %s: %s", candidate, exc)
            payload = {}
        if isinstance(payload, dict):
            for key in DEFAULT_FEATURE_FLAGS:
                if key in payload:
                    flags[key] = _coerce_flag_value(key, payload[key])

    # Explicit env override: HI_FLAG_<FLAG_NAME_UPPER>
    for key in DEFAULT_FEATURE_FLAGS:
        raw = os.getenv(f"HI_FLAG_{key.upper()}", "").strip()
        if raw:
            flags[key] = _coerce_flag_value(key, raw)

    return flags


def get_feature_flag(name: str, default: Any = None) -> Any:
    flags = load_feature_flags()
    if name in flags:
        return flags[name]
    return default
