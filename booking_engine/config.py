"""
Centralized configuration with environment variable overrides.

Per-builder scheduling settings live in the settings store; the values here
are the fallbacks used when a builder has not saved any, plus the engine-wide
booking policy and storage settings.
"""

import logging
import os
from dataclasses import dataclass, field

import pytz
from dotenv import load_dotenv

from booking_engine.logging_context import configure_logging

load_dotenv()

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag from an env var."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class SchedulingDefaults:
    """Fallback scheduling settings for builders without saved settings."""

    timezone: str = os.getenv("DEFAULT_TIMEZONE", "UTC")
    min_notice_minutes: int = _safe_int("DEFAULT_MIN_NOTICE_MINUTES", "0")
    buffer_minutes: int = _safe_int("DEFAULT_BUFFER_MINUTES", "0")
    max_advance_days: int = _safe_int("DEFAULT_MAX_ADVANCE_DAYS", "60")


@dataclass(frozen=True)
class BookingPolicyConfig:
    """Engine-wide booking rules."""

    max_query_range_days: int = _safe_int("MAX_QUERY_RANGE_DAYS", "31")
    auto_confirm_bookings: bool = _safe_bool("AUTO_CONFIRM_BOOKINGS", "false")
    pending_hold_minutes: int = _safe_int("PENDING_HOLD_MINUTES", "30")


@dataclass(frozen=True)
class StorageConfig:
    """Persistence settings."""

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./booking_engine.db")
    db_echo: bool = _safe_bool("DB_ECHO", "false")
    slow_query_threshold_sec: float = _safe_float("DB_SLOW_QUERY_THRESHOLD", "1.0")
    repository_timeout_sec: float = _safe_float("REPOSITORY_TIMEOUT_SEC", "5.0")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    scheduling: SchedulingDefaults = field(default_factory=SchedulingDefaults)
    booking: BookingPolicyConfig = field(default_factory=BookingPolicyConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    service_name: str = os.getenv("SERVICE_NAME", "booking-engine")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.scheduling.timezone not in pytz.all_timezones_set:
        raise ValueError(
            f"DEFAULT_TIMEZONE must be an IANA timezone name, got {config.scheduling.timezone!r}"
        )
    if config.scheduling.min_notice_minutes < 0:
        raise ValueError(
            "DEFAULT_MIN_NOTICE_MINUTES must be >= 0, "
            f"got {config.scheduling.min_notice_minutes}"
        )
    if config.scheduling.buffer_minutes < 0:
        raise ValueError(
            f"DEFAULT_BUFFER_MINUTES must be >= 0, got {config.scheduling.buffer_minutes}"
        )
    if config.scheduling.max_advance_days < 1:
        raise ValueError(
            f"DEFAULT_MAX_ADVANCE_DAYS must be >= 1, got {config.scheduling.max_advance_days}"
        )
    if config.booking.max_query_range_days < 1:
        raise ValueError(
            f"MAX_QUERY_RANGE_DAYS must be >= 1, got {config.booking.max_query_range_days}"
        )
    if config.booking.pending_hold_minutes < 1:
        raise ValueError(
            f"PENDING_HOLD_MINUTES must be >= 1, got {config.booking.pending_hold_minutes}"
        )
    if config.storage.repository_timeout_sec <= 0:
        raise ValueError(
            "REPOSITORY_TIMEOUT_SEC must be > 0, "
            f"got {config.storage.repository_timeout_sec}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    configure_logging(getattr(logging, config.log_level.upper(), logging.INFO))
    logger.info("Configuration loaded for '%s'", config.service_name)
    return config


# Singleton instance
settings = load_config()
