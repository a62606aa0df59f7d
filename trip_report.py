"""
Trip Report - Turns per-day moving segments into an itemized trip list

Three passes:
1. Gap merge (coarse): chronologically adjacent DaySegments whose gap is
   <= detail_gap_seconds become one span. Spans may cross midnight.
2. Trip filter (fine): each span is re-sliced into its raw samples and dropped
   as noise when too short in time, in driven distance, or in start-to-end
   distance.
3. Cross-trip merge: a trip that restarts shortly after the previous one at
   the same place (same address text, or start close to previous end) is
   folded into it. Filters are not re-applied to the merged whole.

Address equality is only as good as the address source: two distinct stops
that resolve to the same text are merged.
"""

import bisect
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from activity_engine import (
    TimezoneLike,
    local_midnight,
    resolve_tz,
    split_block_by_day,
)
from distance_engine import distance_km, leg_km
from reverse_geocode import normalize_address
from telemetry_models import DaySegment, Sample, TripSegment, ensure_aware

logger = logging.getLogger(__name__)

AddressOf = Callable[[Sample], Optional[str]]


@dataclass(frozen=True)
class TripReportConfig:
    """Tuning for the itemized trip list"""

    detail_gap_seconds: float
    detail_min_segment_seconds: float
    detail_min_segment_distance_m: float
    detail_min_start_end_distance_m: float
    detail_merge_stop_seconds: float
    max_plausible_speed_kmh: Optional[float] = None

    @classmethod
    def from_settings(cls, settings) -> "TripReportConfig":
        rep = settings.report
        return cls(
            detail_gap_seconds=rep.detail_gap_seconds,
            detail_min_segment_seconds=rep.detail_min_segment_seconds,
            detail_min_segment_distance_m=rep.detail_min_segment_distance_m,
            detail_min_start_end_distance_m=rep.detail_min_start_end_distance_m,
            detail_merge_stop_seconds=rep.detail_merge_stop_seconds,
            max_plausible_speed_kmh=rep.max_plausible_speed_kmh,
        )


@dataclass(frozen=True)
class TimeSpan:
    """Absolute [start, end] interval produced by the gap merge"""

    start: datetime
    end: datetime

    @property
    def seconds(self) -> float:
        return self.end.timestamp() - self.start.timestamp()


def _epoch(dt: datetime) -> float:
    return ensure_aware(dt).timestamp()


def sample_times(samples: Sequence[Sample]) -> List[float]:
    """Epoch seconds of each sample, the key list for the bisect lookups."""
    return [_epoch(s.timestamp) for s in samples]


def find_nearest_sample(
    samples: Sequence[Sample],
    target: datetime,
    times: Optional[Sequence[float]] = None,
) -> Optional[Sample]:
    """
    Closest sample to `target` by time, ties go to the earlier sample.

    Args:
        samples: Samples sorted by timestamp
        target: Time to look up
        times: Precomputed sample_times(samples), to avoid rebuilding per lookup

    Returns:
        The nearest sample, None for an empty list
    """
    if not samples:
        return None
    if times is None:
        times = sample_times(samples)

    t = _epoch(target)
    idx = bisect.bisect_left(times, t)
    if idx == 0:
        return samples[0]
    if idx >= len(samples):
        return samples[-1]

    before = t - times[idx - 1]
    after = times[idx] - t
    return samples[idx - 1] if before <= after else samples[idx]


def _segment_span(day, segment: DaySegment, zone) -> TimeSpan:
    base = local_midnight(day, zone)
    return TimeSpan(
        start=datetime.fromtimestamp(base + segment.start_second, timezone.utc),
        end=datetime.fromtimestamp(base + segment.end_second, timezone.utc),
    )


def merge_day_segments(
    segments_by_day: Dict, gap_seconds: float, tz: TimezoneLike = None
) -> List[TimeSpan]:
    """
    Coarse pass: merge adjacent DaySegments separated by <= gap_seconds.

    Args:
        segments_by_day: DailyActivity.segments_by_day
        gap_seconds: Largest gap bridged (detail_gap_seconds)
        tz: Timezone the DaySegments were computed in

    Returns:
        Chronological absolute spans (UTC datetimes)
    """
    zone = resolve_tz(tz)
    spans = sorted(
        (
            _segment_span(day, seg, zone)
            for day, segments in segments_by_day.items()
            for seg in segments
        ),
        key=lambda s: s.start,
    )

    merged: List[TimeSpan] = []
    for span in spans:
        if merged and _epoch(span.start) - _epoch(merged[-1].end) <= gap_seconds:
            last = merged[-1]
            merged[-1] = TimeSpan(start=last.start, end=max(last.end, span.end))
        else:
            merged.append(span)
    return merged


def _stored_address(sample: Sample) -> Optional[str]:
    return normalize_address(sample.address)


def slice_trips(
    spans: Sequence[TimeSpan],
    samples: Sequence[Sample],
    cfg: TripReportConfig,
    tz: TimezoneLike = None,
    address_of: Optional[AddressOf] = None,
    times: Optional[Sequence[float]] = None,
) -> List[TripSegment]:
    """
    Fine pass: slice each span into raw samples and drop noise.

    A span is discarded when its sample range has fewer than two samples, or
    lasts < detail_min_segment_seconds, or accumulates
    < detail_min_segment_distance_m of leg distance, or ends
    < detail_min_start_end_distance_m (straight line) from where it began.
    """
    zone = resolve_tz(tz)
    address_of = address_of or _stored_address
    if times is None:
        times = sample_times(samples)

    trips: List[TripSegment] = []
    for span in spans:
        lo = bisect.bisect_left(times, _epoch(span.start))
        hi = bisect.bisect_right(times, _epoch(span.end))
        chunk = samples[lo:hi]
        if len(chunk) < 2:
            continue

        duration = times[hi - 1] - times[lo]
        if duration < cfg.detail_min_segment_seconds:
            continue

        driven_km = sum(
            leg_km(prev, cur, cfg.max_plausible_speed_kmh)
            for prev, cur in zip(chunk, chunk[1:])
        )
        if driven_km * 1000.0 < cfg.detail_min_segment_distance_m:
            continue

        if distance_km(chunk[0], chunk[-1]) * 1000.0 < cfg.detail_min_start_end_distance_m:
            continue

        start_sample = find_nearest_sample(samples, span.start, times)
        end_sample = find_nearest_sample(samples, span.end, times)
        start_time = ensure_aware(chunk[0].timestamp)
        end_time = ensure_aware(chunk[-1].timestamp)

        trips.append(
            TripSegment(
                day=start_time.astimezone(zone).date(),
                start_time=start_time,
                end_time=end_time,
                start_point=start_sample.point,
                end_point=end_sample.point,
                duration_seconds=duration,
                distance_km=driven_km,
                start_address=address_of(start_sample),
                end_address=address_of(end_sample),
            )
        )

    logger.debug(f"Trips: {len(trips)} of {len(spans)} spans kept")
    return trips


def _same_place(prev: TripSegment, nxt: TripSegment, min_distance_m: float) -> bool:
    if prev.end_address and nxt.start_address and prev.end_address == nxt.start_address:
        return True
    if prev.end_point.is_valid and nxt.start_point.is_valid:
        return distance_km(prev.end_point, nxt.start_point) * 1000.0 < min_distance_m
    return False


def merge_adjacent_trips(
    trips: Sequence[TripSegment], cfg: TripReportConfig
) -> List[TripSegment]:
    """
    Cross-trip pass: fold a trip into its predecessor after a short stop in place.

    The stop must be <= detail_merge_stop_seconds and the restart must be at
    the same address text or within detail_min_start_end_distance_m.
    The merged trip keeps the first trip's start, takes the second trip's
    end, and sums both distances.
    """
    merged: List[TripSegment] = []
    for trip in sorted(trips, key=lambda t: _epoch(t.start_time)):
        if merged:
            prev = merged[-1]
            gap = _epoch(trip.start_time) - _epoch(prev.end_time)
            if gap <= cfg.detail_merge_stop_seconds and _same_place(
                prev, trip, cfg.detail_min_start_end_distance_m
            ):
                merged[-1] = replace(
                    prev,
                    end_time=trip.end_time,
                    end_point=trip.end_point,
                    end_address=trip.end_address,
                    duration_seconds=_epoch(trip.end_time) - _epoch(prev.start_time),
                    distance_km=prev.distance_km + trip.distance_km,
                )
                continue
        merged.append(trip)
    return merged


def build_trips(
    segments_by_day: Dict,
    samples: Sequence[Sample],
    cfg: TripReportConfig,
    tz: TimezoneLike = None,
    address_of: Optional[AddressOf] = None,
) -> List[TripSegment]:
    """
    Full pipeline: gap merge, trip filter, cross-trip merge.

    Args:
        segments_by_day: DailyActivity.segments_by_day
        samples: Raw samples of the same window, sorted by time
        cfg: Trip tuning
        tz: Timezone the DaySegments were computed in
        address_of: Address text for an endpoint sample. Defaults to the
            sample's stored (normalized) address.

    Returns:
        Chronological trip list
    """
    spans = merge_day_segments(segments_by_day, cfg.detail_gap_seconds, tz)
    trips = slice_trips(spans, samples, cfg, tz, address_of)
    return merge_adjacent_trips(trips, cfg)


def bar_segments(spans: Sequence[TimeSpan], tz: TimezoneLike = None) -> Dict:
    """
    Re-cut merged spans at local midnight for per-day bar rendering.

    Returns:
        Dict[date, List[DaySegment]]
    """
    out: Dict = {}
    for span in spans:
        for piece in split_block_by_day(span.start, span.end, tz):
            out.setdefault(piece.day, []).append(piece)
    return out


def day_window(day, tz: TimezoneLike = None) -> TimeSpan:
    """Absolute span covering one local calendar day."""
    zone = resolve_tz(tz)
    return TimeSpan(
        start=datetime.fromtimestamp(local_midnight(day, zone), timezone.utc),
        end=datetime.fromtimestamp(
            local_midnight(day + timedelta(days=1), zone), timezone.utc
        ),
    )
