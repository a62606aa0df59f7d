"""
Tests for distance_engine
"""

import pytest

from distance_engine import distance_km, leg_km, total_distance_km
from telemetry_models import GeoPoint

from conftest import sample

# One degree of latitude on the 6371 km sphere
KM_PER_DEGREE = 111.19492664


class TestDistanceKm:
    """Haversine distance"""

    def test_one_degree_latitude(self):
        """One degree along a meridian"""
        assert distance_km(GeoPoint(0, 0), GeoPoint(1, 0)) == pytest.approx(
            KM_PER_DEGREE, rel=1e-6
        )

    def test_same_point(self):
        """Identical points are 0 km apart"""
        assert distance_km(GeoPoint(48.2, 16.37), GeoPoint(48.2, 16.37)) == 0.0

    def test_vienna_to_graz(self):
        """Known city pair, roughly 145 km"""
        d = distance_km(GeoPoint(48.2082, 16.3738), GeoPoint(47.0707, 15.4395))
        assert 140 < d < 150

    def test_missing_coordinates(self):
        """Missing or non-finite coordinates give 0"""
        assert distance_km(GeoPoint(None, 16.0), GeoPoint(48.0, 16.0)) == 0.0
        assert distance_km(GeoPoint(float("nan"), 16.0), GeoPoint(48.0, 16.0)) == 0.0
        assert distance_km(sample(0), sample(60, lat=48.0, lon=16.0)) == 0.0

    def test_accepts_samples(self):
        """Samples are measured by their position"""
        a = sample(0, lat=0.0, lon=0.0)
        b = sample(60, lat=1.0, lon=0.0)
        assert distance_km(a, b) == pytest.approx(KM_PER_DEGREE, rel=1e-6)


class TestLegKm:
    """Per-leg distance with GPS jump rejection"""

    def test_plausible_leg(self):
        """50 km in 30 minutes is 100 km/h and counts"""
        a = sample(0, lat=0.0, lon=0.0)
        b = sample(1800, lat=0.45, lon=0.0)
        assert leg_km(a, b, 160) == pytest.approx(0.45 * KM_PER_DEGREE, rel=1e-6)

    def test_gps_jump_rejected(self):
        """50 km in 10 s is a jump and contributes 0"""
        a = sample(0, lat=0.0, lon=0.0)
        b = sample(10, lat=0.45, lon=0.0)
        assert leg_km(a, b, 160) == 0.0

    def test_no_speed_limit(self):
        """None disables the plausibility check"""
        a = sample(0, lat=0.0, lon=0.0)
        b = sample(10, lat=0.45, lon=0.0)
        assert leg_km(a, b, None) > 49

    def test_zero_elapsed(self):
        """Two fixes at the same instant contribute nothing"""
        a = sample(0, lat=0.0, lon=0.0)
        b = sample(0, lat=0.01, lon=0.0)
        assert leg_km(a, b, 160) == 0.0

    def test_missing_coordinates(self):
        """A leg with an unknown end contributes nothing"""
        assert leg_km(sample(0, lat=0.0, lon=0.0), sample(60), 160) == 0.0


class TestTotalDistanceKm:
    """Sum over consecutive legs"""

    def test_jump_and_return_excluded(self):
        """Both legs of an outlier excursion are dropped"""
        samples = [
            sample(0, lat=0.0, lon=0.0),
            sample(60, lat=0.01, lon=0.0),
            sample(70, lat=0.5, lon=0.0),
            sample(120, lat=0.02, lon=0.0),
        ]
        assert total_distance_km(samples, 160) == pytest.approx(
            0.01 * KM_PER_DEGREE, rel=1e-6
        )

    def test_empty_and_single(self):
        """Nothing to sum"""
        assert total_distance_km([], 160) == 0.0
        assert total_distance_km([sample(0, lat=0.0, lon=0.0)], 160) == 0.0
