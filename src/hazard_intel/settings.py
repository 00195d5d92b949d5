"""Environment and credential settings."""

from __future__ import annotations

import os

from dotenv import load_dotenv

from .feature_flags import get_feature_flag


def load_environment() -> None:
    load_dotenv(override=False)


def _env(name: str) -> str:
    return os.getenv(name, "").strip()


def get_hf_api_key() -> str:
    return _env("HF_API_KEY")


def get_twitter_bearer_token() -> str:
    return _env("TWITTER_BEARER_TOKEN")


def get_youtube_api_key() -> str:
    return _env("YOUTUBE_API_KEY")


def get_facebook_access_token() -> str:
    return _env("FACEBOOK_ACCESS_TOKEN")


def get_live_ws_url() -> str:
    return _env("LIVE_WS_URL")


def get_authority_api_url() -> str:
    if not get_feature_flag("authority_verification_enabled", True):
        return ""
    return _env("AUTHORITY_API_URL")


def get_authority_api_key() -> str:
    return _env("AUTHORITY_API_KEY")


def get_google_geocoding_api_key() -> str:
    return _env("GOOGLE_GEOCODING_API_KEY")


def get_opencage_api_key() -> str:
    return _env("OPENCAGE_API_KEY")


def is_source_enabled(source: str) -> bool:
    return bool(get_feature_flag(f"{source}_enabled", True))


def is_multilingual_enabled() -> bool:
    return bool(get_feature_flag("multilingual_classification_enabled", False))


def is_secondary_classifier_enabled() -> bool:
    return bool(get_feature_flag("secondary_classifier_enabled", False))


def is_geocoding_enabled() -> bool:
    return bool(get_feature_flag("geocoding_enabled", True))
