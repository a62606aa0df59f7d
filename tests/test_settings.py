"""
Tests for settings, logger_config and errors
"""

import logging
from datetime import datetime, timezone

import pytest

from errors import (
    ErrorCategory,
    ExternalServiceError,
    FleetEngineError,
    UnorderedInputError,
    ValidationError,
)
from logger_config import ColoredFormatter, get_logger, setup_logging
from settings import Settings, get_settings


@pytest.fixture
def env(monkeypatch):
    """Patch env vars, reload settings, restore both afterwards"""
    yield monkeypatch
    monkeypatch.undo()
    get_settings().reload()


class TestSettings:
    """Environment-driven configuration"""

    def test_singleton(self):
        """Settings() always returns the same instance"""
        assert Settings() is get_settings()

    def test_defaults(self, env):
        """Unset variables fall back to the documented defaults"""
        for key in ("MIN_SPEED_KMH", "STOP_TOLERANCE_SEC", "MIN_MOVING_SECONDS", "FUEL_JSON_KEY"):
            env.delenv(key, raising=False)
        settings = get_settings()
        settings.reload()

        assert settings.activity.min_speed_kmh == 5.0
        assert settings.activity.stop_tolerance_sec == 120.0
        assert settings.activity.min_moving_seconds == 60.0
        assert settings.fuel.json_keys == ["fuel", "fuel.level", "io48"]

    def test_env_override(self, env):
        """Environment values win after reload()"""
        env.setenv("MIN_SPEED_KMH", "8")
        env.setenv("FUEL_JSON_KEY", "io48, fuel")
        env.setenv("GEOCODE_CACHE_MAX_SIZE", "500")
        settings = get_settings()
        settings.reload()

        assert settings.activity.min_speed_kmh == 8.0
        assert settings.fuel.json_keys == ["io48", "fuel"]
        assert settings.geocode.cache_max_size == 500
        assert settings.to_dict()["min_speed_kmh"] == 8.0

    def test_validate_warnings(self, env):
        """Inconsistent thresholds are reported"""
        env.setenv("STOP_TOLERANCE_SEC", "900")
        env.setenv("MIN_STOP_SECONDS", "600")
        env.setenv("GEOCODE_MAX_CONCURRENCY", "0")
        env.delenv("GEOCODE_CACHE_MAX_SIZE", raising=False)
        settings = get_settings()
        settings.reload()

        warnings = settings.validate()
        assert any("STOP_TOLERANCE_SEC" in w for w in warnings)
        assert any("GEOCODE_MAX_CONCURRENCY" in w for w in warnings)
        assert any("GEOCODE_CACHE_MAX_SIZE" in w for w in warnings)


class TestLogging:
    """Console and file logging setup"""

    def test_file_logging(self, tmp_path):
        """Log files are created in the requested directory"""
        logger = setup_logging("fleet_test", level="DEBUG", log_dir=tmp_path / "logs")
        try:
            logger.error("boom")
            for handler in logger.handlers:
                handler.flush()

            assert (tmp_path / "logs" / "fleet_test.log").exists()
            assert "boom" in (tmp_path / "logs" / "fleet_test_errors.log").read_text()
            assert logger.level == logging.DEBUG
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()

    def test_console_only(self):
        """get_logger attaches a single console handler"""
        logger = get_logger("fleet_console_test", level="WARNING")
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)
        assert logger.level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        logger = get_logger("fleet_level_test", level="chatty")
        assert logger.level == logging.INFO

    def test_colored_formatter_leaves_record_alone(self):
        """Coloring applies to a copy of the record"""
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "msg", None, None)
        text = ColoredFormatter("%(levelname)s %(message)s").format(record)

        assert "\033[33m" in text
        assert record.levelname == "WARNING"


class TestErrors:
    """Error hierarchy"""

    def test_validation_error(self):
        err = ValidationError("month required (YYYY-MM)", field="month")
        assert isinstance(err, FleetEngineError)
        assert err.to_dict()["error"] == "validation"
        assert err.to_dict()["details"] == {"field": "month"}

    def test_unordered_input_error(self):
        prev = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
        cur = datetime(2024, 1, 1, 7, 0, tzinfo=timezone.utc)
        err = UnorderedInputError(3, prev, cur)

        assert err.index == 3
        assert err.category == ErrorCategory.UNORDERED_INPUT
        assert err.details["previous"] == prev.isoformat()

    def test_external_service_error(self):
        err = ExternalServiceError("nominatim", "geocode_failed_429")
        assert str(err) == "nominatim: geocode_failed_429"
        assert err.details["service"] == "nominatim"
