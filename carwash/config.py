"""
Centralized configuration with environment variable overrides.

Two layers live here:

* ``AppConfig`` holds process settings (log level, sweeper cadence, saga
  retry policy, and the defaults for every booking tunable). It is read once
  from the environment and exposed as the ``settings`` singleton.
* ``BookingConfiguration`` holds the per-business tunables that operators
  edit at runtime. It is resolved per operation from the store's key/value
  table through ``BookingConfigProvider``; absent keys fall back to
  ``AppConfig.booking`` defaults.
"""

import logging
import os
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from dotenv import load_dotenv

from carwash.errors import ConfigurationError
from carwash.logging_context import OperationIdFilter

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
    """Parse a boolean flag from an env var (true/false, yes/no, on/off, 1/0)."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


class CapacityPolicy(str, Enum):
    """How many concurrent bookings a time slot can hold."""

    BAY_POOL = "bay_pool"
    SERVICE_CAPACITY = "service_capacity"


@dataclass(frozen=True)
class BookingDefaults:
    """Fallback values for booking tunables missing from the config store."""

    interval_minutes: int = _safe_int("SLOT_INTERVAL_MINUTES", "30")
    lead_time_hours: int = _safe_int("LEAD_TIME_HOURS", "2")
    max_advance_days: int = _safe_int("MAX_ADVANCE_DAYS", "30")
    cancellation_deadline_hours: int = _safe_int("CANCELLATION_DEADLINE_HOURS", "24")
    auto_bay_assignment: bool = _safe_bool("AUTO_BAY_ASSIGNMENT", "true")
    auto_confirm: bool = _safe_bool("AUTO_CONFIRM", "false")
    allow_customer_cancellation: bool = _safe_bool("ALLOW_CUSTOMER_CANCELLATION", "true")
    capacity_policy: str = os.getenv("SLOT_CAPACITY_POLICY", CapacityPolicy.BAY_POOL.value)


@dataclass(frozen=True)
class SweeperConfig:
    """No-show sweeper cadence."""

    no_show_grace_minutes: int = _safe_int("NO_SHOW_GRACE_MINUTES", "30")
    sweep_interval_seconds: int = _safe_int("SWEEP_INTERVAL_SECONDS", "300")


@dataclass(frozen=True)
class SagaConfig:
    """Retry policy for retryable saga steps."""

    max_attempts: int = _safe_int("SAGA_MAX_ATTEMPTS", "3")
    retry_backoff_seconds: float = _safe_float("SAGA_RETRY_BACKOFF_SECONDS", "1.0")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    booking: BookingDefaults = field(default_factory=BookingDefaults)
    sweeper: SweeperConfig = field(default_factory=SweeperConfig)
    saga: SagaConfig = field(default_factory=SagaConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "carwash-booking")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.booking.interval_minutes < 1:
        raise ValueError(
            f"SLOT_INTERVAL_MINUTES must be >= 1, got {config.booking.interval_minutes}"
        )
    if config.booking.lead_time_hours < 0:
        raise ValueError(
            f"LEAD_TIME_HOURS must be >= 0, got {config.booking.lead_time_hours}"
        )
    if config.booking.max_advance_days < 1:
        raise ValueError(
            f"MAX_ADVANCE_DAYS must be >= 1, got {config.booking.max_advance_days}"
        )
    if config.booking.cancellation_deadline_hours < 0:
        raise ValueError(
            "CANCELLATION_DEADLINE_HOURS must be >= 0, "
            f"got {config.booking.cancellation_deadline_hours}"
        )
    if config.booking.capacity_policy not in {p.value for p in CapacityPolicy}:
        raise ValueError(
            f"SLOT_CAPACITY_POLICY must be one of {[p.value for p in CapacityPolicy]}, "
            f"got {config.booking.capacity_policy!r}"
        )
    if config.sweeper.no_show_grace_minutes < 0:
        raise ValueError(
            f"NO_SHOW_GRACE_MINUTES must be >= 0, got {config.sweeper.no_show_grace_minutes}"
        )
    if config.sweeper.sweep_interval_seconds < 1:
        raise ValueError(
            f"SWEEP_INTERVAL_SECONDS must be >= 1, got {config.sweeper.sweep_interval_seconds}"
        )
    if config.saga.max_attempts < 1:
        raise ValueError(
            f"SAGA_MAX_ATTEMPTS must be >= 1, got {config.saga.max_attempts}"
        )
    if config.saga.retry_backoff_seconds < 0:
        raise ValueError(
            "SAGA_RETRY_BACKOFF_SECONDS must be >= 0, "
            f"got {config.saga.retry_backoff_seconds}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] [%(operation_id)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, OperationIdFilter) for f in handler.filters):
            handler.addFilter(OperationIdFilter())
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()


@dataclass(frozen=True)
class BookingConfiguration:
    """Booking tunables resolved for a single operation."""

    interval_minutes: int = 30
    lead_time_hours: int = 2
    max_advance_days: int = 30
    cancellation_deadline_hours: int = 24
    auto_bay_assignment: bool = True
    auto_confirm: bool = False
    allow_customer_cancellation: bool = True
    capacity_policy: CapacityPolicy = CapacityPolicy.BAY_POOL

    @classmethod
    def from_defaults(cls, defaults: BookingDefaults) -> "BookingConfiguration":
        return cls(
            interval_minutes=defaults.interval_minutes,
            lead_time_hours=defaults.lead_time_hours,
            max_advance_days=defaults.max_advance_days,
            cancellation_deadline_hours=defaults.cancellation_deadline_hours,
            auto_bay_assignment=defaults.auto_bay_assignment,
            auto_confirm=defaults.auto_confirm,
            allow_customer_cancellation=defaults.allow_customer_cancellation,
            capacity_policy=CapacityPolicy(defaults.capacity_policy),
        )

    def with_overrides(self, **overrides: Any) -> "BookingConfiguration":
        return replace(self, **overrides)


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid integer for config key {key}: {value!r}", key=key)
    try:
        return int(value)
    except (ValueError, TypeError):
        raise ConfigurationError(
            f"Invalid integer for config key {key}: {value!r}", key=key
        ) from None


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean for config key {key}: {value!r}", key=key)


def _coerce_policy(key: str, value: Any) -> CapacityPolicy:
    try:
        return CapacityPolicy(str(value).strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Invalid capacity policy for config key {key}: {value!r}", key=key
        ) from None


_CONFIG_PARSERS: dict[str, Callable[[str, Any], Any]] = {
    "interval_minutes": _coerce_int,
    "lead_time_hours": _coerce_int,
    "max_advance_days": _coerce_int,
    "cancellation_deadline_hours": _coerce_int,
    "auto_bay_assignment": _coerce_bool,
    "auto_confirm": _coerce_bool,
    "allow_customer_cancellation": _coerce_bool,
    "capacity_policy": _coerce_policy,
}


def parse_booking_configuration(
    values: Mapping[str, Any], base: BookingConfiguration
) -> BookingConfiguration:
    """Overlay stored key/value pairs on ``base``. Unknown keys are ignored."""
    overrides: dict[str, Any] = {}
    for key, parser in _CONFIG_PARSERS.items():
        if key in values and values[key] is not None:
            overrides[key] = parser(key, values[key])
    unknown = set(values) - set(_CONFIG_PARSERS)
    if unknown:
        logger.debug("Ignoring unknown booking config keys: %s", sorted(unknown))
    return base.with_overrides(**overrides)


class BookingConfigProvider:
    """
    Resolves ``BookingConfiguration`` from a store's key/value table.

    With ``ttl_seconds=0`` (the default) every call re-reads the store, so
    each operation sees the current values. A positive TTL caches the
    resolved configuration until it expires or ``invalidate()`` is called.
    """

    def __init__(
        self,
        store: Any,
        defaults: Optional[BookingDefaults] = None,
        ttl_seconds: float = 0.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._base = BookingConfiguration.from_defaults(defaults or settings.booking)
        self._ttl_seconds = ttl_seconds
        self._monotonic = monotonic
        self._cached: Optional[BookingConfiguration] = None
        self._cached_at: float = 0.0

    def load(self) -> BookingConfiguration:
        if (
            self._cached is not None
            and self._ttl_seconds > 0
            and self._monotonic() - self._cached_at < self._ttl_seconds
        ):
            return self._cached
        config = parse_booking_configuration(self._store.get_config_values(), self._base)
        self._cached = config
        self._cached_at = self._monotonic()
        return config

    def invalidate(self) -> None:
        self._cached = None
