"""
Tests for trip_report: nearest-sample lookup, gap merge, trip filters and cross-trip merge
"""

from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from activity_engine import compute_daily_activity
from telemetry_models import DaySegment, GeoPoint, TripSegment
from trip_report import (
    bar_segments,
    build_trips,
    day_window,
    find_nearest_sample,
    merge_adjacent_trips,
    merge_day_segments,
    slice_trips,
)

from conftest import at, drive, sample

DAY = date(2024, 1, 10)


def trip(t0, t1, start_lat, end_lat, start_address=None, end_address=None, km=5.0):
    return TripSegment(
        day=DAY,
        start_time=at(t0),
        end_time=at(t1),
        start_point=GeoPoint(start_lat, 16.0),
        end_point=GeoPoint(end_lat, 16.0),
        duration_seconds=t1 - t0,
        distance_km=km,
        start_address=start_address,
        end_address=end_address,
    )


class TestFindNearestSample:
    """Nearest-by-time lookup"""

    @pytest.fixture
    def samples(self):
        return [sample(0), sample(10), sample(20)]

    def test_exact_and_between(self, samples):
        """Closest timestamp wins"""
        assert find_nearest_sample(samples, at(10)) is samples[1]
        assert find_nearest_sample(samples, at(14)) is samples[1]
        assert find_nearest_sample(samples, at(16)) is samples[2]

    def test_tie_goes_to_earlier(self, samples):
        """Equidistant target picks the earlier sample"""
        assert find_nearest_sample(samples, at(15)) is samples[1]

    def test_outside_range(self, samples):
        """Targets before the first or after the last clamp to the ends"""
        assert find_nearest_sample(samples, at(-100)) is samples[0]
        assert find_nearest_sample(samples, at(500)) is samples[2]

    def test_empty(self):
        """No samples gives None"""
        assert find_nearest_sample([], at(0)) is None


class TestMergeDaySegments:
    """Coarse gap merge"""

    def test_small_gap_bridged(self):
        """Segments closer than the gap threshold merge"""
        spans = merge_day_segments(
            {
                DAY: [
                    DaySegment(DAY, 100, 200),
                    DaySegment(DAY, 250, 400),
                    DaySegment(DAY, 1000, 1100),
                ]
            },
            gap_seconds=60,
        )
        midnight = datetime(2024, 1, 10, tzinfo=timezone.utc).timestamp()

        assert [(s.start.timestamp() - midnight, s.end.timestamp() - midnight) for s in spans] == [
            (100, 400),
            (1000, 1100),
        ]

    def test_midnight_pieces_rejoined(self):
        """Pieces of one block split at midnight form one span again"""
        d1, d2 = date(2024, 1, 31), date(2024, 2, 1)
        spans = merge_day_segments(
            {d2: [DaySegment(d2, 0, 600)], d1: [DaySegment(d1, 85800, 86400)]},
            gap_seconds=0,
        )

        assert len(spans) == 1
        assert spans[0].start == datetime(2024, 1, 31, 23, 50, tzinfo=timezone.utc)
        assert spans[0].end == datetime(2024, 2, 1, 0, 10, tzinfo=timezone.utc)
        assert spans[0].seconds == 1200

    def test_bar_segments_recut(self):
        """bar_segments cuts merged spans at midnight again"""
        d1, d2 = date(2024, 1, 31), date(2024, 2, 1)
        spans = merge_day_segments(
            {d1: [DaySegment(d1, 85800, 86400)], d2: [DaySegment(d2, 0, 600)]},
            gap_seconds=0,
        )
        bars = bar_segments(spans)
        assert bars == {
            d1: [DaySegment(d1, 85800, 86400)],
            d2: [DaySegment(d2, 0, 600)],
        }

    def test_empty(self):
        """No segments, no spans"""
        assert merge_day_segments({}, 60) == []


class TestSliceTrips:
    """Fine filter on raw samples"""

    def _spans(self, samples, activity_cfg, trip_cfg):
        activity = compute_daily_activity(samples, activity_cfg)
        return merge_day_segments(activity.segments_by_day, trip_cfg.detail_gap_seconds)

    def test_real_trip_kept(self, activity_cfg, trip_cfg):
        """Ten minutes over about 4.4 km passes all filters"""
        samples = drive(0, 600, 30, 48.0, 0.002)
        trips = slice_trips(self._spans(samples, activity_cfg, trip_cfg), samples, trip_cfg)

        assert len(trips) == 1
        t = trips[0]
        assert t.day == DAY
        assert t.start_time == at(0)
        assert t.end_time == at(600)
        assert t.duration_seconds == 600
        assert t.distance_km == pytest.approx(20 * 0.002 * 111.19492664, rel=1e-4)
        assert t.start_point == GeoPoint(48.0, 16.0)

    def test_short_duration_dropped(self, activity_cfg, trip_cfg):
        """Under detail_min_segment_seconds"""
        samples = drive(0, 90, 30, 48.0, 0.004)
        assert slice_trips(self._spans(samples, activity_cfg, trip_cfg), samples, trip_cfg) == []

    def test_short_distance_dropped(self, activity_cfg, trip_cfg):
        """Under detail_min_segment_distance_m of driven distance"""
        samples = drive(0, 300, 30, 48.0, 0.0002)
        assert slice_trips(self._spans(samples, activity_cfg, trip_cfg), samples, trip_cfg) == []

    def test_loop_dropped(self, activity_cfg, trip_cfg):
        """Driving out and back ends where it began"""
        out = drive(0, 300, 30, 48.0, 0.002)
        back = [
            sample(330 + i * 30, 40, lat=48.02 - (i + 1) * 0.002, lon=16.0)
            for i in range(10)
        ]
        samples = out + back
        assert slice_trips(self._spans(samples, activity_cfg, trip_cfg), samples, trip_cfg) == []

    def test_stored_address_used(self, activity_cfg, trip_cfg):
        """Endpoint addresses default to the stored, normalized address"""
        samples = drive(0, 600, 30, 48.0, 0.002)
        samples[0] = replace(samples[0], address='{"road": "Ringstrasse", "city": "Wien"}')
        samples[-1] = replace(samples[-1], address="  Hauptplatz 1  ")
        trips = slice_trips(self._spans(samples, activity_cfg, trip_cfg), samples, trip_cfg)

        assert trips[0].start_address == "Ringstrasse, Wien"
        assert trips[0].end_address == "Hauptplatz 1"

    def test_custom_address_function(self, activity_cfg, trip_cfg):
        """address_of overrides the stored address"""
        samples = drive(0, 600, 30, 48.0, 0.002)
        trips = slice_trips(
            self._spans(samples, activity_cfg, trip_cfg),
            samples,
            trip_cfg,
            address_of=lambda s: f"{s.latitude:.3f}",
        )
        assert trips[0].start_address == "48.000"
        assert trips[0].end_address == "48.040"


class TestMergeAdjacentTrips:
    """Cross-trip merge"""

    def test_restart_at_same_spot(self, trip_cfg):
        """Short stop and restart within 150 m folds the trips together"""
        merged = merge_adjacent_trips(
            [trip(0, 600, 48.0, 48.04, km=4.4), trip(700, 1300, 48.0401, 48.08, km=4.5)],
            trip_cfg,
        )

        assert len(merged) == 1
        m = merged[0]
        assert m.start_time == at(0)
        assert m.end_time == at(1300)
        assert m.duration_seconds == 1300
        assert m.distance_km == pytest.approx(8.9)
        assert m.end_point == GeoPoint(48.08, 16.0)

    def test_same_address_text(self, trip_cfg):
        """Equal address text merges even when the points are far apart"""
        merged = merge_adjacent_trips(
            [
                trip(0, 600, 48.0, 48.04, end_address="Main St 1"),
                trip(700, 1300, 48.5, 48.6, start_address="Main St 1"),
            ],
            trip_cfg,
        )
        assert len(merged) == 1

    def test_long_stop_not_merged(self, trip_cfg):
        """A stop longer than detail_merge_stop_seconds keeps the trips apart"""
        merged = merge_adjacent_trips(
            [trip(0, 600, 48.0, 48.04), trip(1000, 1600, 48.04, 48.08)], trip_cfg
        )
        assert len(merged) == 2

    def test_different_place_not_merged(self, trip_cfg):
        """Restarting elsewhere under a different address keeps the trips apart"""
        merged = merge_adjacent_trips(
            [
                trip(0, 600, 48.0, 48.04, end_address="A"),
                trip(700, 1300, 48.1, 48.2, start_address="B"),
            ],
            trip_cfg,
        )
        assert len(merged) == 2

    def test_missing_coordinates_need_address(self, trip_cfg):
        """Without valid points only the address rule can merge"""
        merged = merge_adjacent_trips(
            [trip(0, 600, 48.0, None), trip(700, 1300, None, 48.1)], trip_cfg
        )
        assert len(merged) == 2

    def test_chain_of_three(self, trip_cfg):
        """Merging continues from the already merged trip"""
        merged = merge_adjacent_trips(
            [
                trip(0, 600, 48.0, 48.04, km=1),
                trip(700, 1300, 48.04, 48.08, km=2),
                trip(1400, 2000, 48.08, 48.12, km=3),
            ],
            trip_cfg,
        )
        assert len(merged) == 1
        assert merged[0].distance_km == pytest.approx(6)


class TestBuildTrips:
    """Whole pipeline from daily activity to trip list"""

    def _samples(self):
        first = drive(0, 600, 30, 48.0, 0.002)
        second = drive(1300, 1900, 30, 48.04, 0.002)
        return first + second

    def test_separate_trips(self, activity_cfg, trip_cfg):
        """A 700 s stop exceeds the merge window"""
        samples = self._samples()
        activity = compute_daily_activity(samples, activity_cfg)
        trips = build_trips(activity.segments_by_day, samples, trip_cfg)

        assert len(trips) == 2
        assert [t.start_time for t in trips] == [at(0), at(1300)]

    def test_merged_trip(self, activity_cfg, trip_cfg):
        """With a wider merge window the restart at the same spot folds in"""
        samples = self._samples()
        activity = compute_daily_activity(samples, activity_cfg)
        cfg = replace(trip_cfg, detail_merge_stop_seconds=900)
        trips = build_trips(activity.segments_by_day, samples, cfg)

        assert len(trips) == 1
        assert trips[0].duration_seconds == 1900
        assert trips[0].distance_km == pytest.approx(40 * 0.002 * 111.19492664, rel=1e-4)


class TestDayWindow:
    def test_local_day(self):
        """Vienna day starts at 23:00 UTC the evening before (winter)"""
        window = day_window(date(2024, 1, 10), "Europe/Vienna")
        assert window.start == datetime(2024, 1, 9, 23, 0, tzinfo=timezone.utc)
        assert window.seconds == 86400
