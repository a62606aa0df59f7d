"""
Fleet Activity Engine Settings
Centralized configuration from environment variables

Every threshold the engines use can be overridden through the environment
(or a .env file). The engines themselves take explicit config objects; this
module only supplies the host's defaults.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _get_env(key: str, default: str = "", required: bool = False) -> str:
    """Get environment variable with optional requirement enforcement."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set!")
    return value


def _get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    return int(os.getenv(key, str(default)))


def _get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    return float(os.getenv(key, str(default)))


def _get_env_optional_int(key: str) -> Optional[int]:
    """Get integer environment variable, None when unset or blank."""
    value = os.getenv(key, "").strip()
    return int(value) if value else None


def _get_env_list(key: str, default: str = "", separator: str = ",") -> List[str]:
    """Get list from comma-separated environment variable."""
    value = os.getenv(key, default)
    return [item.strip() for item in value.split(separator) if item.strip()]


# =============================================================================
# ACTIVITY SETTINGS
# =============================================================================
@dataclass
class ActivitySettings:
    """Moving-block detection thresholds."""

    min_speed_kmh: float = field(
        default_factory=lambda: _get_env_float("MIN_SPEED_KMH", 5.0)
    )
    min_moving_seconds: float = field(
        default_factory=lambda: _get_env_float("MIN_MOVING_SECONDS", 60.0)
    )
    # A gap (no samples) or idle period this long always ends a block
    min_stop_seconds: float = field(
        default_factory=lambda: _get_env_float("MIN_STOP_SECONDS", 600.0)
    )
    stop_tolerance_sec: float = field(
        default_factory=lambda: _get_env_float("STOP_TOLERANCE_SEC", 120.0)
    )


# =============================================================================
# FUEL SETTINGS
# =============================================================================
@dataclass
class FuelSettings:
    """Fuel extraction and drop/refuel detection configuration."""

    # Candidate attribute paths, first finite value wins
    json_keys: List[str] = field(
        default_factory=lambda: _get_env_list("FUEL_JSON_KEY", "fuel,fuel.level,io48")
    )
    drop_liters: float = field(
        default_factory=lambda: _get_env_float("FUEL_DROP_LITERS", 10.0)
    )
    drop_percent: float = field(
        default_factory=lambda: _get_env_float("FUEL_DROP_PERCENT", 8.0)
    )
    # Accepted for compatibility, not used by detection
    window_minutes: float = field(
        default_factory=lambda: _get_env_float("FUEL_WINDOW_MINUTES", 10.0)
    )
    refuel_liters: float = field(
        default_factory=lambda: _get_env_float("FUEL_REFUEL_LITERS", 10.0)
    )
    refuel_percent: float = field(
        default_factory=lambda: _get_env_float("FUEL_REFUEL_PERCENT", 8.0)
    )
    # Size of the recent window used for the fleet status alert
    recent_samples: int = field(
        default_factory=lambda: _get_env_int("FUEL_RECENT_SAMPLES", 120)
    )


# =============================================================================
# REPORT SETTINGS
# =============================================================================
@dataclass
class ReportSettings:
    """Distance filtering and trip list tuning."""

    max_plausible_speed_kmh: float = field(
        default_factory=lambda: _get_env_float("MAX_PLAUSIBLE_SPEED_KMH", 160.0)
    )
    detail_gap_seconds: float = field(
        default_factory=lambda: _get_env_float("DETAIL_GAP_SECONDS", 300.0)
    )
    detail_min_segment_seconds: float = field(
        default_factory=lambda: _get_env_float("DETAIL_MIN_SEGMENT_SECONDS", 120.0)
    )
    detail_min_segment_distance_m: float = field(
        default_factory=lambda: _get_env_float("DETAIL_MIN_SEGMENT_DISTANCE_M", 300.0)
    )
    detail_min_start_end_distance_m: float = field(
        default_factory=lambda: _get_env_float("DETAIL_MIN_START_END_DISTANCE_M", 150.0)
    )
    detail_merge_stop_seconds: float = field(
        default_factory=lambda: _get_env_float("DETAIL_MERGE_STOP_SECONDS", 300.0)
    )


# =============================================================================
# GEOCODING SETTINGS
# =============================================================================
@dataclass
class GeocodeSettings:
    """Reverse geocoding (Nominatim) configuration."""

    url: str = field(
        default_factory=lambda: _get_env(
            "GEOCODE_URL", "https://nominatim.openstreetmap.org/reverse"
        )
    )
    user_agent: str = field(
        default_factory=lambda: _get_env(
            "GEOCODE_USER_AGENT", "fleet-activity-engine/1.0 (fleet)"
        )
    )
    timeout_seconds: float = field(
        default_factory=lambda: _get_env_float("GEOCODE_TIMEOUT_SEC", 7.0)
    )
    cache_ttl_seconds: float = field(
        default_factory=lambda: _get_env_float("GEOCODE_CACHE_TTL_SEC", 24 * 3600.0)
    )
    max_concurrency: int = field(
        default_factory=lambda: _get_env_int("GEOCODE_MAX_CONCURRENCY", 2)
    )
    # None keeps the cache unbounded (lazy expiry only)
    cache_max_size: Optional[int] = field(
        default_factory=lambda: _get_env_optional_int("GEOCODE_CACHE_MAX_SIZE")
    )
    precision: int = field(
        default_factory=lambda: _get_env_int("GEOCODE_PRECISION", 4)
    )
    missing_address_text: str = field(
        default_factory=lambda: _get_env("MISSING_ADDRESS_TEXT", "Address missing")
    )


# =============================================================================
# APPLICATION SETTINGS
# =============================================================================
@dataclass
class AppSettings:
    """General application settings."""

    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))
    log_dir: Path = field(
        default_factory=lambda: Path(
            _get_env("LOG_DIR", str(Path(__file__).parent / "logs"))
        )
    )
    version: str = "1.0.0"

    # Calendar days are cut at local midnight of this timezone
    display_tz: str = field(
        default_factory=lambda: _get_env("DISPLAY_TZ", "Europe/Vienna")
    )


# =============================================================================
# GLOBAL SETTINGS INSTANCE
# =============================================================================
class Settings:
    """Global settings container - singleton pattern."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize all settings."""
        self.activity = ActivitySettings()
        self.fuel = FuelSettings()
        self.report = ReportSettings()
        self.geocode = GeocodeSettings()
        self.app = AppSettings()

    def reload(self) -> None:
        """Re-read the environment (tests patch env vars then reload)."""
        self._initialize()

    def validate(self) -> List[str]:
        """Validate settings and return list of warnings."""
        warnings = []

        if self.activity.stop_tolerance_sec >= self.activity.min_stop_seconds:
            warnings.append(
                "STOP_TOLERANCE_SEC >= MIN_STOP_SECONDS - every dip ends a block"
            )

        if self.activity.min_speed_kmh <= 0:
            warnings.append("MIN_SPEED_KMH <= 0 - every sample counts as moving")

        if not self.fuel.json_keys:
            warnings.append("FUEL_JSON_KEY is empty - no fuel readings will be found")

        if self.report.max_plausible_speed_kmh <= 0:
            warnings.append(
                "MAX_PLAUSIBLE_SPEED_KMH <= 0 - every GPS leg will be rejected"
            )

        if self.geocode.max_concurrency <= 0:
            warnings.append(
                "GEOCODE_MAX_CONCURRENCY <= 0 - outbound geocoding is unlimited"
            )

        if self.geocode.cache_max_size is None:
            warnings.append("GEOCODE_CACHE_MAX_SIZE not set - geocode cache is unbounded")

        return warnings

    def to_dict(self) -> Dict:
        """Export settings as dictionary (for debugging)."""
        return {
            "version": self.app.version,
            "display_tz": self.app.display_tz,
            "min_speed_kmh": self.activity.min_speed_kmh,
            "min_moving_seconds": self.activity.min_moving_seconds,
            "min_stop_seconds": self.activity.min_stop_seconds,
            "stop_tolerance_sec": self.activity.stop_tolerance_sec,
            "fuel_keys": list(self.fuel.json_keys),
            "geocode_url": self.geocode.url,
            "geocode_max_concurrency": self.geocode.max_concurrency,
        }


# Create global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get global settings instance."""
    return settings


# Export commonly used settings
ACTIVITY = settings.activity
FUEL = settings.fuel
REPORT = settings.report
GEOCODE = settings.geocode
APP = settings.app
