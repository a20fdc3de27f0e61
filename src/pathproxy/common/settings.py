"""Application configuration for the proxy service."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class ProxySettings(BaseSettings):
    """Runtime settings for the templated proxy service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    url_patterns: Optional[str] = env_field(None, "URL_PATTERNS")
    url_pattern: Optional[str] = env_field(None, "URL_PATTERN")
    use_positional_params: bool = env_field(False, "USE_POSITIONAL_PARAMS")
    allowed: str = env_field("", "ALLOWED")
    cache_directory: Path = env_field(Path("./cache"), "CACHE_DIR")
    cache_default_ttl_seconds: int = env_field(0, "CACHE_DEFAULT_TTL")
    cache_api_key: Optional[SecretStr] = env_field(None, "CACHE_API_KEY")
    cache_cleanup_interval_seconds: int = env_field(3600, "CACHE_CLEANUP_INTERVAL")
    cache_cleanup_initial_delay_seconds: int = env_field(60, "CACHE_CLEANUP_INITIAL_DELAY")
    upstream_timeout_seconds: float = env_field(30.0, "UPSTREAM_TIMEOUT")
    host: str = env_field("0.0.0.0", "HOST")
    port: int = env_field(3000, "PORT")
    log_level: str = env_field("INFO", "LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "OTEL_SAMPLER_RATIO")

    @property
    def otlp_headers(self) -> Dict[str, str]:
        """``OTEL_EXPORTER_HEADERS`` (``key=value,key2=value2``) as a mapping."""
        headers: Dict[str, str] = {}
        for item in (self.otel_exporter_headers or "").split(","):
            key, _, value = item.partition("=")
            if key.strip() and value.strip():
                headers[key.strip()] = value.strip()
        return headers

    @field_validator("url_patterns", "url_pattern", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("cache_default_ttl_seconds", "cache_cleanup_initial_delay_seconds")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be non-negative")
        return value

    @field_validator("cache_cleanup_interval_seconds")
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("cleanup interval must be positive")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value):
        if not isinstance(value, str):
            return value
        name = value.strip().upper()
        if name == "WARN":
            name = "WARNING"
        if name not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return name

    @field_validator("otel_sampler_ratio")
    @classmethod
    def _clamp_ratio(cls, value: float) -> float:
        return max(0.0, min(1.0, value))
