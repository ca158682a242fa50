"""Configuration management for the rent sweeper."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.constants import DEFAULT_FEE_WALLET

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
PROFILE_ENV_VAR = "SWEEPER_PROFILE"
DEFAULT_PROFILE = "mainnet"
HELIUS_DAS_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"


class LedgerBackend(str, Enum):
    """Storage backends available for lock and vesting records."""

    MEMORY = "memory"
    SQLITE = "sqlite"


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
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested = (os.getenv(PROFILE_ENV_VAR) or DEFAULT_PROFILE).lower()
    if requested != "default" and isinstance(data.get(requested), dict):
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested]))
    if base_section:
        return base_section
    # Files without profile tables are treated as a flat configuration.
    return {key: value for key, value in data.items() if isinstance(value, dict)}


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    return _select_profile(payload), path


class RPCConfig(BaseModel):
    """RPC configuration for Solana endpoints."""

    primary_url: AnyHttpUrl = Field(default="https://api.mainnet-beta.solana.com")
    fallback_urls: List[AnyHttpUrl] = Field(default_factory=list)
    request_timeout: float = Field(default=12.0, ge=1.0, le=60.0)
    commitment: str = Field(default="confirmed")
    min_call_interval_seconds: float = Field(default=0.5, ge=0.0, le=10.0)
    call_deadline_seconds: float = Field(default=30.0, gt=0.0, le=300.0)

    @field_validator("fallback_urls", mode="before")
    @classmethod
    def _unique_urls(cls, value: Iterable[AnyHttpUrl] | str) -> List[AnyHttpUrl]:
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        seen: set[str] = set()
        unique: List[AnyHttpUrl] = []
        for url in value:
            if str(url) not in seen:
                unique.append(url)
                seen.add(str(url))
        return unique


class RetryConfig(BaseModel):
    """Backoff applied when the RPC node throttles requests."""

    max_attempts: int = Field(default=4, ge=1, le=20)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=10.0, ge=0.0)

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "RetryConfig":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self


class MetadataConfig(BaseModel):
    """Helius DAS metadata lookups and mint caches."""

    helius_api_key: Optional[str] = None
    das_url: Optional[AnyHttpUrl] = None
    http_timeout: float = Field(default=10.0, ge=1.0, le=60.0)
    cache_ttl_seconds: int = Field(default=3600, ge=0)
    cache_size: int = Field(default=4096, ge=1)
    mint_cache_ttl_seconds: int = Field(default=3600, ge=0)
    rent_cache_ttl_seconds: int = Field(default=300, ge=0)


class FeeConfig(BaseModel):
    """Platform fee deducted from recovered rent."""

    fee_rate: float = Field(default=0.10, ge=0.0, lt=1.0)
    fee_wallet: str = Field(default=DEFAULT_FEE_WALLET)


class LedgerConfig(BaseModel):
    """Where lock and vesting records live."""

    backend: LedgerBackend = LedgerBackend.MEMORY
    database_path: Path = Field(default=Path("./ledger.sqlite3"))


class BulkConfig(BaseModel):
    max_wallets: int = Field(default=50, ge=1, le=500)


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    rpc: RPCConfig = Field(default_factory=RPCConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    fees: FeeConfig = Field(default_factory=FeeConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    bulk: BulkConfig = Field(default_factory=BulkConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

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
            payload, _ = _load_toml_config()
            return payload

        # Ensure runtime environment variables win over static config file defaults.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _sync_helius_defaults(self) -> "AppConfig":
        api_key = self.metadata.helius_api_key or os.getenv("HELIUS_API_KEY")
        if api_key:
            self.metadata.helius_api_key = api_key.strip()
        if self.metadata.das_url is None and self.metadata.helius_api_key:
            self.metadata.das_url = HELIUS_DAS_TEMPLATE.format(key=self.metadata.helius_api_key)
        return self


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "BulkConfig",
    "FeeConfig",
    "LedgerBackend",
    "LedgerConfig",
    "MetadataConfig",
    "MonitoringConfig",
    "RPCConfig",
    "RetryConfig",
    "get_app_config",
]
