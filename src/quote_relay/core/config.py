"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from datetime import time
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from quote_relay.core.exceptions import ConfigError
from quote_relay.core.models import Timeframe

DEFAULT_HIGH_INTEREST_TICKERS = (
    "SPY",
    "QQQ",
    "IWM",
    "AAPL",
    "GOOGL",
    "MSFT",
    "AMZN",
    "TSLA",
    "NVDA",
)

KNOWN_PROVIDERS = ("yahoo", "alpha_vantage", "mock")


def _split_csv(v: object) -> object:
    """Accept "a,b" or a bare "a" where a list of names is expected."""
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


class DispatcherConfig(BaseModel):
    """Request coalescing and batch dispatch configuration."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = 8
    batch_delay: float = 0.15
    max_queue_size: int = 100
    request_timeout: float = 10.0

    @field_validator("batch_size", "max_queue_size")
    @classmethod
    def positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("batch_delay")
    @classmethod
    def delay_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("batch_delay must be >= 0")
        return v

    @field_validator("request_timeout")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be > 0")
        return v


class CacheConfig(BaseModel):
    """Volatility-aware quote cache configuration. All durations in seconds."""

    model_config = ConfigDict(frozen=True)

    max_entries: int = 1000
    high_volatility_ttl: float = 30.0
    medium_volatility_ttl: float = 60.0
    low_volatility_ttl: float = 300.0
    after_hours_ttl: float = 600.0
    cleanup_interval: float = 300.0
    high_volatility_threshold: float = 0.05
    medium_volatility_threshold: float = 0.02
    default_volatility: float = 0.02
    eviction_fraction: float = 0.2
    high_interest_tickers: tuple[str, ...] = DEFAULT_HIGH_INTEREST_TICKERS

    @field_validator("max_entries")
    @classmethod
    def max_entries_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_entries must be >= 1")
        return v

    @field_validator("eviction_fraction")
    @classmethod
    def fraction_in_range(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("eviction_fraction must be in (0, 1]")
        return v

    @field_validator("high_interest_tickers", mode="before")
    @classmethod
    def split_tickers(cls, v: object) -> object:
        return _split_csv(v)

    @field_validator("high_interest_tickers")
    @classmethod
    def uppercase_tickers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(t.strip().upper() for t in v if t.strip())

    @model_validator(mode="after")
    def ttls_ordered(self) -> CacheConfig:
        if not (
            0
            < self.high_volatility_ttl
            <= self.medium_volatility_ttl
            <= self.low_volatility_ttl
            <= self.after_hours_ttl
        ):
            raise ValueError(
                "TTLs must satisfy 0 < high_volatility_ttl <= medium_volatility_ttl"
                " <= low_volatility_ttl <= after_hours_ttl"
            )
        if not 0 <= self.medium_volatility_threshold < self.high_volatility_threshold:
            raise ValueError(
                "medium_volatility_threshold must be below high_volatility_threshold"
            )
        return self


class HistoryConfig(BaseModel):
    """Price history store bounds."""

    model_config = ConfigDict(frozen=True)

    max_entries: int = 1000
    retention_seconds: float = 300.0

    @field_validator("max_entries")
    @classmethod
    def max_entries_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_entries must be >= 1")
        return v


class MarketHoursConfig(BaseModel):
    """Regular trading session of the reference exchange."""

    model_config = ConfigDict(frozen=True)

    timezone: str = "America/New_York"
    open_time: time = time(9, 30)
    close_time: time = time(16, 0)

    @field_validator("timezone")
    @classmethod
    def timezone_exists(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v

    @model_validator(mode="after")
    def open_before_close(self) -> MarketHoursConfig:
        if self.open_time >= self.close_time:
            raise ValueError("open_time must be before close_time")
        return self


class RetryConfig(BaseModel):
    """Per-provider retry/backoff policy."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 2
    base_delay: float = 0.5
    max_delay: float = 4.0
    backoff: float = 2.0

    @field_validator("max_attempts")
    @classmethod
    def attempts_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v


class YahooConfig(BaseModel):
    """Yahoo Finance chart API provider."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    base_url: str = "https://query1.finance.yahoo.com"
    timeout: float = 10.0
    rate_limit: int = 8
    rate_period: float = 1.0
    retry: RetryConfig = RetryConfig()


class AlphaVantageConfig(BaseModel):
    """Alpha Vantage GLOBAL_QUOTE provider. Skipped without an API key."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    api_key: str | None = None
    base_url: str = "https://www.alphavantage.co/query"
    timeout: float = 15.0
    rate_limit: int = 5
    rate_period: float = 60.0
    retry: RetryConfig = RetryConfig(max_attempts=1)


class MockConfig(BaseModel):
    """Synthetic last-resort provider."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    jitter: float = 0.01
    seed: int | None = None

    @field_validator("jitter")
    @classmethod
    def jitter_in_range(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError("jitter must be in [0, 1)")
        return v


class ProvidersConfig(BaseModel):
    """Provider chain order and per-provider settings."""

    model_config = ConfigDict(frozen=True)

    order: tuple[str, ...] = KNOWN_PROVIDERS
    timeframe: Timeframe = Timeframe.ONE_DAY
    yahoo: YahooConfig = YahooConfig()
    alpha_vantage: AlphaVantageConfig = AlphaVantageConfig()
    mock: MockConfig = MockConfig()

    @field_validator("order", mode="before")
    @classmethod
    def split_order(cls, v: object) -> object:
        return _split_csv(v)

    @field_validator("order")
    @classmethod
    def known_names(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("order must name at least one provider")
        unknown = [name for name in v if name not in KNOWN_PROVIDERS]
        if unknown:
            raise ValueError(
                f"Unknown providers {unknown}; expected any of {list(KNOWN_PROVIDERS)}"
            )
        if len(set(v)) != len(v):
            raise ValueError("order must not repeat providers")
        return v


class RelayConfig(BaseModel):
    """Root configuration for the entire quote-relay pipeline."""

    model_config = ConfigDict(frozen=True)

    dispatcher: DispatcherConfig = DispatcherConfig()
    cache: CacheConfig = CacheConfig()
    history: HistoryConfig = HistoryConfig()
    market_hours: MarketHoursConfig = MarketHoursConfig()
    providers: ProvidersConfig = ProvidersConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "QUOTE_RELAY_",
) -> RelayConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (QUOTE_RELAY_DISPATCHER__BATCH_SIZE, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        QUOTE_RELAY_CACHE__MAX_ENTRIES=500  ->  cache.max_entries = 500
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return RelayConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("QUOTE_RELAY_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from QUOTE_RELAY_CONFIG not found: {env_path}",
                context={"field": "QUOTE_RELAY_CONFIG", "value": env_path},
            )
        return p

    default = Path("quote-relay.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float,
    comma-separated strings -> list.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool | list[str]:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if "," in value:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value
