"""Configuration management for the token aggregation service."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
PROFILE_ENV_VAR = "APP_PROFILE"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    if "default" not in data:
        return data
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested = (os.getenv(PROFILE_ENV_VAR) or "default").lower()
    if requested != "default" and isinstance(data.get(requested), dict):
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested]))
    return base_section


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    merged = _select_profile(payload)
    if not isinstance(merged, dict):
        return {}, path
    return dict(merged), path


class DataSourceConfig(BaseModel):
    """Endpoints and request limits for the upstream data sources."""

    coingecko_base_url: AnyHttpUrl = Field(default="https://api.coingecko.com/api/v3")
    coingecko_api_key: Optional[str] = None
    coingecko_platform_id: str = Field(default="sei-v2")
    coingecko_ids_per_request: int = Field(default=50, ge=1, le=250)
    dexscreener_base_url: AnyHttpUrl = Field(default="https://api.dexscreener.com")
    dexscreener_chain_id: str = Field(default="seiv2")
    dexscreener_addresses_per_request: int = Field(default=30, ge=1, le=30)
    dune_base_url: AnyHttpUrl = Field(default="https://api.dune.com/api/v1")
    dune_api_key: Optional[str] = None
    dune_query_id: Optional[str] = None
    dune_page_size: int = Field(default=10_000, ge=1)
    max_swap_events: Optional[int] = Field(default=None, ge=1)
    request_delay_seconds: float = Field(default=1.5, ge=0.0)
    http_timeout: float = Field(default=10.0, ge=1.0, le=60.0)

    @field_validator("coingecko_api_key", "dune_api_key", "dune_query_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class RetryConfig(BaseModel):
    """Backoff policies for rate-limited and failing requests."""

    rate_limit_max_retries: int = Field(default=3, ge=0, le=10)
    rate_limit_initial_delay_seconds: float = Field(default=1.0, ge=0.0)
    rate_limit_max_delay_seconds: float = Field(default=10.0, ge=0.0)
    page_max_retries: int = Field(default=3, ge=0, le=10)
    page_retry_delay_seconds: float = Field(default=1.0, ge=0.0)


class CacheConfig(BaseModel):
    """Time-to-live settings for the process-lifetime caches."""

    ttl_seconds: int = Field(default=300, ge=1)
    price_ttl_seconds: int = Field(default=1_800, ge=0)
    identifier_ttl_seconds: int = Field(default=12 * 3_600, ge=0)
    price_cache_size: int = Field(default=10_000, ge=1)
    filter_tokens_without_data: bool = True


class MetadataConfig(BaseModel):
    """Location of the token universe CSV."""

    csv_path: Path = Field(default=Path("data/sei_all_tokens_no_dup_CA_or_name.csv"))


class ApiConfig(BaseModel):
    """HTTP layer settings."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65_535)
    default_page_limit: int = Field(default=50, ge=1)
    default_top_traded_limit: int = Field(default=10, ge=1)
    max_page_limit: int = Field(default=100, ge=1)
    refresh_on_startup: bool = True
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value) -> str:
        return str(value or "INFO").upper()


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    data_sources: DataSourceConfig = Field(default_factory=DataSourceConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    config_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, path = _load_toml_config()
            if path is not None:
                payload.setdefault("config_file", str(path))
            return payload

        # Runtime environment variables win over static config file defaults.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _apply_legacy_env(self) -> "AppConfig":
        legacy = {
            "dune_api_key": os.getenv("DUNE_API_KEY"),
            "dune_query_id": os.getenv("DUNE_QUERY_ID"),
            "coingecko_api_key": os.getenv("COINGECKO_API_KEY"),
        }
        for key, value in legacy.items():
            if value and getattr(self.data_sources, key) is None:
                setattr(self.data_sources, key, value.strip())
        port = os.getenv("PORT")
        if port and port.strip().isdigit():
            self.api.port = int(port.strip())
        return self


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "ApiConfig",
    "AppConfig",
    "CacheConfig",
    "DataSourceConfig",
    "MetadataConfig",
    "MonitoringConfig",
    "RetryConfig",
    "get_app_config",
]
