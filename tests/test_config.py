"""Tests for configuration loading and validation."""

import pytest

from carwash.config import (
    AppConfig,
    BookingConfigProvider,
    BookingConfiguration,
    BookingDefaults,
    CapacityPolicy,
    SagaConfig,
    SweeperConfig,
    _validate_config,
    parse_booking_configuration,
)
from carwash.errors import ConfigurationError


def build_config(booking=None, sweeper=None, saga=None):
    config = AppConfig.__new__(AppConfig)
    object.__setattr__(config, "booking", booking or BookingDefaults())
    object.__setattr__(config, "sweeper", sweeper or SweeperConfig())
    object.__setattr__(config, "saga", saga or SagaConfig())
    object.__setattr__(config, "log_level", "INFO")
    object.__setattr__(config, "app_name", "test")
    return config


class TestConfigValidation:
    def test_default_config_passes_validation(self):
        config = AppConfig()
        _validate_config(config)  # should not raise

    def test_invalid_interval(self):
        booking = BookingDefaults.__new__(BookingDefaults)
        for name, value in vars(BookingDefaults()).items():
            object.__setattr__(booking, name, value)
        object.__setattr__(booking, "interval_minutes", 0)

        with pytest.raises(ValueError, match="SLOT_INTERVAL_MINUTES"):
            _validate_config(build_config(booking=booking))

    def test_invalid_capacity_policy(self):
        booking = BookingDefaults.__new__(BookingDefaults)
        for name, value in vars(BookingDefaults()).items():
            object.__setattr__(booking, name, value)
        object.__setattr__(booking, "capacity_policy", "first_come")

        with pytest.raises(ValueError, match="SLOT_CAPACITY_POLICY"):
            _validate_config(build_config(booking=booking))

    def test_invalid_saga_attempts(self):
        saga = SagaConfig.__new__(SagaConfig)
        object.__setattr__(saga, "max_attempts", 0)
        object.__setattr__(saga, "retry_backoff_seconds", 1.0)

        with pytest.raises(ValueError, match="SAGA_MAX_ATTEMPTS"):
            _validate_config(build_config(saga=saga))

    def test_invalid_sweep_interval(self):
        sweeper = SweeperConfig.__new__(SweeperConfig)
        object.__setattr__(sweeper, "no_show_grace_minutes", 30)
        object.__setattr__(sweeper, "sweep_interval_seconds", 0)

        with pytest.raises(ValueError, match="SWEEP_INTERVAL_SECONDS"):
            _validate_config(build_config(sweeper=sweeper))

    def test_safe_int_parsing(self):
        from carwash.config import _safe_int

        assert _safe_int("NONEXISTENT_VAR_12345", "42") == 42

    def test_safe_int_rejects_garbage(self, monkeypatch):
        from carwash.config import _safe_int

        monkeypatch.setenv("CARWASH_TEST_INT", "ten")
        with pytest.raises(ValueError, match="CARWASH_TEST_INT"):
            _safe_int("CARWASH_TEST_INT", "1")

    def test_safe_float_parsing(self):
        from carwash.config import _safe_float

        assert _safe_float("NONEXISTENT_VAR_12345", "3.14") == pytest.approx(3.14)

    @pytest.mark.parametrize("raw,expected", [("yes", True), ("OFF", False), ("1", True)])
    def test_safe_bool_parsing(self, monkeypatch, raw, expected):
        from carwash.config import _safe_bool

        monkeypatch.setenv("CARWASH_TEST_BOOL", raw)
        assert _safe_bool("CARWASH_TEST_BOOL", "false") is expected


class TestBookingConfiguration:
    def test_stored_values_override_defaults(self):
        config = parse_booking_configuration(
            {"lead_time_hours": "4", "auto_confirm": "true", "capacity_policy": "service_capacity"},
            BookingConfiguration(),
        )
        assert config.lead_time_hours == 4
        assert config.auto_confirm is True
        assert config.capacity_policy == CapacityPolicy.SERVICE_CAPACITY
        assert config.interval_minutes == 30

    def test_unknown_keys_ignored(self):
        config = parse_booking_configuration({"theme": "dark"}, BookingConfiguration())
        assert config == BookingConfiguration()

    @pytest.mark.parametrize("values", [
        {"interval_minutes": "half an hour"},
        {"auto_confirm": "maybe"},
        {"capacity_policy": "unlimited"},
        {"lead_time_hours": True},
    ])
    def test_bad_values_raise(self, values):
        with pytest.raises(ConfigurationError):
            parse_booking_configuration(values, BookingConfiguration())


class TestBookingConfigProvider:
    def test_reads_store_every_time_without_ttl(self, store):
        provider = BookingConfigProvider(store, defaults=BookingDefaults(lead_time_hours=2))
        assert provider.load().lead_time_hours == 2
        store.set_config_value("lead_time_hours", 6)
        assert provider.load().lead_time_hours == 6

    def test_ttl_caches_until_expiry(self, store):
        now = [100.0]
        provider = BookingConfigProvider(store, ttl_seconds=30, monotonic=lambda: now[0])
        first = provider.load()
        store.set_config_value("interval_minutes", 15)
        assert provider.load() is first
        now[0] += 31
        assert provider.load().interval_minutes == 15

    def test_invalidate_drops_cache(self, store):
        provider = BookingConfigProvider(store, ttl_seconds=300)
        provider.load()
        store.set_config_value("max_advance_days", 60)
        provider.invalidate()
        assert provider.load().max_advance_days == 60
