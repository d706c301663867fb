"""
Configuration loader for the VentureGuide service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class LLMConfig:
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    temperature: float = 0.7
    max_tokens: int = 3000
    api_key: str = ""
    timeout_seconds: float = 60.0
    idea_count: int = 5


@dataclass
class SessionConfig:
    store_backend: str = "memory"       # only in-memory sessions are supported
    ttl_seconds: int = 3600             # sliding expiry, reset on every update
    sweep_interval_seconds: int = 120   # how often expired sessions are dropped


@dataclass
class GeocodingConfig:
    reverse_url: str = "https://nominatim.openstreetmap.org/reverse"
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    user_agent: str = "VentureGuide/1.0"
    timeout_seconds: float = 15.0
    nearby_radius_m: int = 2000
    analysis_radius_m: int = 5000
    max_results: int = 20


@dataclass
class UploadConfig:
    max_pdf_bytes: int = 10 * 1024 * 1024
    summary_chars: int = 8000           # document text sent for the upload summary
    answer_chars: int = 6000            # document text sent when answering questions


@dataclass
class Settings:
    app_name: str = "VentureGuide"
    debug: bool = False
    default_language: str = "en-IN"
    supported_languages: list[str] = field(default_factory=lambda: ["en-IN", "hi-IN", "mr-IN"])
    copy_path: str = ""
    llm: LLMConfig = field(default_factory=LLMConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    geocoding: GeocodingConfig = field(default_factory=GeocodingConfig)
    uploads: UploadConfig = field(default_factory=UploadConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "VENTUREGUIDE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.default_language = raw.get("default_language", settings.default_language)
        settings.supported_languages = raw.get("supported_languages", settings.supported_languages)
        settings.copy_path = raw.get("copy_path", settings.copy_path)

        if "llm" in raw:
            llm = raw["llm"]
            settings.llm = LLMConfig(
                provider=llm.get("provider", "anthropic"),
                model=llm.get("model", "claude-sonnet-4-20250514"),
                temperature=llm.get("temperature", 0.7),
                max_tokens=llm.get("max_tokens", 3000),
                api_key=llm.get("api_key", ""),
                timeout_seconds=llm.get("timeout_seconds", 60.0),
                idea_count=llm.get("idea_count", 5),
            )

        if "session" in raw:
            s = raw["session"]
            settings.session = SessionConfig(
                store_backend=s.get("store_backend", "memory"),
                ttl_seconds=s.get("ttl_seconds", 3600),
                sweep_interval_seconds=s.get("sweep_interval_seconds", 120),
            )

        if "geocoding" in raw:
            geo = raw["geocoding"]
            defaults = GeocodingConfig()
            settings.geocoding = GeocodingConfig(
                reverse_url=geo.get("reverse_url", defaults.reverse_url),
                overpass_url=geo.get("overpass_url", defaults.overpass_url),
                user_agent=geo.get("user_agent", defaults.user_agent),
                timeout_seconds=geo.get("timeout_seconds", defaults.timeout_seconds),
                nearby_radius_m=geo.get("nearby_radius_m", defaults.nearby_radius_m),
                analysis_radius_m=geo.get("analysis_radius_m", defaults.analysis_radius_m),
                max_results=geo.get("max_results", defaults.max_results),
            )

        if "uploads" in raw:
            up = raw["uploads"]
            settings.uploads = UploadConfig(
                max_pdf_bytes=up.get("max_pdf_bytes", 10 * 1024 * 1024),
                summary_chars=up.get("summary_chars", 8000),
                answer_chars=up.get("answer_chars", 6000),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
