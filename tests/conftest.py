"""
Pytest Configuration for the Fleet Activity Engine Tests

Shared sample builders and threshold fixtures. Nothing here touches the
network or a database.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from activity_engine import ActivityConfig  # noqa: E402
from telemetry_models import Sample  # noqa: E402
from trip_report import TripReportConfig  # noqa: E402

BASE = datetime(2024, 1, 10, 8, 0, 0, tzinfo=timezone.utc)


def at(seconds: float, base: datetime = BASE) -> datetime:
    """BASE + seconds"""
    return base + timedelta(seconds=seconds)


def sample(t: float, speed: float = 0.0, lat=None, lon=None, attributes=None, address=None, base=BASE):
    return Sample(
        timestamp=at(t, base),
        speed_kmh=speed,
        latitude=lat,
        longitude=lon,
        attributes=attributes,
        address=address,
    )


def drive(t0: float, t1: float, step: float, lat0: float, dlat: float, speed: float = 40.0, lon: float = 16.0):
    """Samples every `step` seconds in [t0, t1], moving dlat degrees north per step."""
    out = []
    i = 0
    t = t0
    while t <= t1:
        out.append(sample(t, speed, lat=lat0 + i * dlat, lon=lon))
        i += 1
        t += step
    return out


@pytest.fixture
def activity_cfg():
    """No minimum block length so every moving block is visible"""
    return ActivityConfig(
        min_speed_kmh=5.0,
        min_moving_seconds=0.0,
        min_stop_seconds=600.0,
        stop_tolerance_sec=120.0,
    )


@pytest.fixture
def trip_cfg():
    return TripReportConfig(
        detail_gap_seconds=60.0,
        detail_min_segment_seconds=120.0,
        detail_min_segment_distance_m=300.0,
        detail_min_start_end_distance_m=150.0,
        detail_merge_stop_seconds=300.0,
        max_plausible_speed_kmh=160.0,
    )
