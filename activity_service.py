"""
Activity Service - Host-facing monthly views built on the engines

Combines the activity, fuel, distance and trip engines into the shapes the
dashboard and the report renderer consume:

- month_activity: zero-filled per-day active time of one device
- fleet_activity: per-device monthly totals, busiest first
- fuel_month / fuel_status: per-minute fuel series, drops and refuels
- ActivityReportBuilder: monthly logbook rows plus the itemized trip list,
  with endpoint addresses resolved concurrently through the bounded resolver

Sample loading, HTTP and rendering stay with the host.
"""

import asyncio
import bisect
import calendar
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from activity_engine import (
    ActivityConfig,
    TimezoneLike,
    compute_daily_activity,
    resolve_tz,
)
from distance_engine import total_distance_km
from errors import ValidationError
from fuel_engine import (
    FuelDropConfig,
    RefuelConfig,
    build_fuel_series,
    detect_fuel_drops,
    detect_refuels,
    extract_fuel_value,
)
from report_models import (
    ActivityReport,
    DayActivity,
    FleetActivity,
    FleetDeviceActivity,
    FuelAlert,
    FuelMonth,
    FuelPoint,
    FuelStatus,
    MonthActivity,
    ReportDayRow,
    SegmentOut,
    TripOut,
)
from reverse_geocode import AddressResolver
from settings import get_settings
from telemetry_models import FuelSample, Sample, TripSegment, ensure_aware
from trip_report import (
    TripReportConfig,
    day_window,
    find_nearest_sample,
    merge_adjacent_trips,
    merge_day_segments,
    sample_times,
    slice_trips,
)

logger = logging.getLogger(__name__)

_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")


# =============================================================================
# MONTH HELPERS
# =============================================================================


def parse_month(month: str) -> Tuple[int, int]:
    """
    Parse "YYYY-MM".

    Raises:
        ValidationError: malformed string or month outside 1..12
    """
    if not isinstance(month, str) or not _MONTH_RE.match(month):
        raise ValidationError("month required (YYYY-MM)", field="month")
    year, mon = int(month[:4]), int(month[5:])
    if not 1 <= mon <= 12:
        raise ValidationError(f"invalid month {month!r}", field="month")
    return year, mon


def days_of_month(month: str) -> List[date]:
    year, mon = parse_month(month)
    count = calendar.monthrange(year, mon)[1]
    return [date(year, mon, d) for d in range(1, count + 1)]


def month_bounds(month: str, tz: TimezoneLike = None) -> Tuple[datetime, datetime]:
    """[start, end) of the month at local midnight, for the host's sample query."""
    zone = resolve_tz(tz)
    days = days_of_month(month)
    start = datetime.combine(days[0], time.min, tzinfo=zone)
    end = datetime.combine(days[-1] + timedelta(days=1), time.min, tzinfo=zone)
    return start, end


# =============================================================================
# ACTIVITY
# =============================================================================


def month_activity(
    device_id,
    samples: Sequence[Sample],
    month: str,
    cfg: ActivityConfig,
    tz: TimezoneLike = None,
) -> MonthActivity:
    """Per-day active seconds and segments for every day of the month."""
    activity = compute_daily_activity(samples, cfg, tz)
    days = [
        DayActivity(
            day=day,
            active_seconds=activity.seconds_by_day.get(day, 0),
            segments=[
                SegmentOut.from_segment(s) for s in activity.segments_by_day.get(day, [])
            ],
        )
        for day in days_of_month(month)
    ]
    return MonthActivity(device_id=device_id, month=month, days=days)


@dataclass
class DeviceSamples:
    """One device's samples for the query window"""

    device_id: object
    name: Optional[str] = None
    samples: List[Sample] = field(default_factory=list)


def fleet_activity(
    devices: Iterable[DeviceSamples],
    month: str,
    cfg: ActivityConfig,
    tz: TimezoneLike = None,
) -> FleetActivity:
    """Monthly active time per device, sorted by active seconds descending."""
    parse_month(month)
    entries = []
    for device in devices:
        activity = compute_daily_activity(device.samples, cfg, tz)
        entries.append(
            FleetDeviceActivity(
                device_id=device.device_id,
                name=device.name,
                active_seconds=activity.total_seconds,
                days_active=activity.days_active,
            )
        )

    entries.sort(key=lambda e: e.active_seconds, reverse=True)
    return FleetActivity(
        month=month,
        devices=entries,
        total_active_seconds=sum(e.active_seconds for e in entries),
    )


# =============================================================================
# FUEL
# =============================================================================


def fuel_month(
    device_id,
    samples: Sequence[Sample],
    month: str,
    keys: Sequence[str],
    drop_cfg: FuelDropConfig,
    refuel_cfg: RefuelConfig,
) -> FuelMonth:
    """Per-minute fuel series of the month, latest reading, drops and refuels."""
    parse_month(month)
    series = build_fuel_series(samples, keys)
    return FuelMonth(
        device_id=device_id,
        month=month,
        latest=FuelPoint.from_sample(series[-1]) if series else None,
        series=[FuelPoint.from_sample(s) for s in series],
        alerts=[FuelAlert.from_event(e) for e in detect_fuel_drops(series, drop_cfg)],
        refuels=[FuelAlert.from_event(e) for e in detect_refuels(series, refuel_cfg)],
    )


def fuel_status(
    device_id,
    latest: Optional[Sample],
    recent: Sequence[Sample],
    keys: Sequence[str],
    drop_cfg: FuelDropConfig,
    recent_limit: Optional[int] = None,
) -> FuelStatus:
    """
    Current fuel reading plus the most recent drop alert.

    Args:
        device_id: Device identifier (echoed back)
        latest: The device's newest sample, None if it never reported
        recent: The device's newest samples in any order
        keys: Candidate fuel attribute paths
        drop_cfg: Drop thresholds
        recent_limit: Only the newest N samples are considered, defaults to
            FUEL_RECENT_SAMPLES. 0 scans the whole list.
    """
    fuel = extract_fuel_value(latest.attributes, keys) if latest else None

    if recent_limit is None:
        recent_limit = get_settings().fuel.recent_samples

    window = sorted(recent, key=lambda s: ensure_aware(s.timestamp))
    if recent_limit > 0:
        window = window[-recent_limit:]

    series = []
    for sample in window:
        value = extract_fuel_value(sample.attributes, keys)
        if value is not None:
            series.append(FuelSample(time=ensure_aware(sample.timestamp), value=value))

    alerts = detect_fuel_drops(series, drop_cfg)
    return FuelStatus(
        device_id=device_id,
        fuel=fuel,
        fuel_alert=FuelAlert.from_event(alerts[-1]) if alerts else None,
        fuel_error=fuel is None,
    )


# =============================================================================
# MONTHLY REPORT
# =============================================================================


class ActivityReportBuilder:
    """
    Builds the monthly logbook: one row per day plus the itemized trip list.

    Each day row uses the first and last moving sample of that day as start
    and end. Addresses for all endpoints are resolved concurrently; the
    AddressResolver's bounded resolver keeps outbound geocoding capped.
    """

    def __init__(
        self,
        activity_cfg: ActivityConfig,
        trip_cfg: TripReportConfig,
        address_resolver: AddressResolver,
        tz: TimezoneLike = None,
    ):
        self.activity_cfg = activity_cfg
        self.trip_cfg = trip_cfg
        self.address_resolver = address_resolver
        self.zone = resolve_tz(tz)

    @classmethod
    def from_settings(cls, settings=None) -> "ActivityReportBuilder":
        """Thresholds, geocoding and DISPLAY_TZ from the environment settings."""
        if settings is None:
            settings = get_settings()
        return cls(
            activity_cfg=ActivityConfig.from_settings(settings),
            trip_cfg=TripReportConfig.from_settings(settings),
            address_resolver=AddressResolver.from_settings(settings),
            tz=settings.app.display_tz,
        )

    async def _address(self, sample: Optional[Sample]) -> Optional[str]:
        if sample is None:
            return None
        return await self.address_resolver.resolve(
            sample.address, sample.latitude, sample.longitude
        )

    async def _trip_with_addresses(self, trip: TripSegment) -> TripSegment:
        start, end = await asyncio.gather(
            self.address_resolver.lookup(
                trip.start_address, trip.start_point.latitude, trip.start_point.longitude
            ),
            self.address_resolver.lookup(
                trip.end_address, trip.end_point.latitude, trip.end_point.longitude
            ),
        )
        return replace(trip, start_address=start, end_address=end)

    def _with_fallbacks(self, trip: TripSegment) -> TripSegment:
        fallback = self.address_resolver.fallback
        return replace(
            trip,
            start_address=trip.start_address
            or fallback(trip.start_point.latitude, trip.start_point.longitude),
            end_address=trip.end_address
            or fallback(trip.end_point.latitude, trip.end_point.longitude),
        )

    async def resolve_trips(self, trips: Sequence[TripSegment]) -> List[TripSegment]:
        """
        Attach addresses to raw trips and fold restarts at the same place.

        Only real addresses (stored or geocoded) take part in the merge;
        coordinate and missing-address placeholders are filled in afterwards.
        """
        addressed = await asyncio.gather(*(self._trip_with_addresses(t) for t in trips))
        merged = merge_adjacent_trips(addressed, self.trip_cfg)
        return [self._with_fallbacks(t) for t in merged]

    async def _day_row(self, day: date, day_samples: Sequence[Sample], activity) -> ReportDayRow:
        seconds = activity.seconds_by_day.get(day, 0)
        moving = [s for s in day_samples if s.speed_kmh >= self.activity_cfg.min_speed_kmh]
        start_time = ensure_aware(moving[0].timestamp) if moving else None
        end_time = ensure_aware(moving[-1].timestamp) if moving else None

        start_pos = find_nearest_sample(day_samples, start_time) if start_time else None
        end_pos = find_nearest_sample(day_samples, end_time) if end_time else None
        start_address, end_address = await asyncio.gather(
            self._address(start_pos), self._address(end_pos)
        )

        return ReportDayRow(
            day=day,
            start_time=start_time,
            start_address=start_address,
            end_time=end_time,
            end_address=end_address,
            distance_km=total_distance_km(
                day_samples, self.trip_cfg.max_plausible_speed_kmh
            ),
            active_seconds=seconds,
            active_hours=round(seconds / 3600.0, 2),
            segments=[
                SegmentOut.from_segment(s) for s in activity.segments_by_day.get(day, [])
            ],
        )

    async def build(
        self,
        device_id,
        samples: Sequence[Sample],
        month: str,
        device_name: Optional[str] = None,
    ) -> ActivityReport:
        days = days_of_month(month)
        activity = compute_daily_activity(samples, self.activity_cfg, self.zone)
        times = sample_times(samples)

        day_tasks = []
        for day in days:
            window = day_window(day, self.zone)
            lo = bisect.bisect_left(times, window.start.timestamp())
            hi = bisect.bisect_left(times, window.end.timestamp())
            day_tasks.append(self._day_row(day, samples[lo:hi], activity))

        spans = merge_day_segments(
            activity.segments_by_day, self.trip_cfg.detail_gap_seconds, self.zone
        )
        raw_trips = slice_trips(spans, samples, self.trip_cfg, self.zone, times=times)

        rows, trips = await asyncio.gather(
            asyncio.gather(*day_tasks), self.resolve_trips(raw_trips)
        )

        total_seconds = sum(r.active_seconds for r in rows)
        total_distance = sum(r.distance_km for r in rows)
        logger.info(
            f"Report {device_id} {month}: {total_seconds}s active, "
            f"{total_distance:.1f} km, {len(trips)} trips"
        )

        return ActivityReport(
            device_id=device_id,
            device_name=device_name,
            month=month,
            rows=list(rows),
            trips=[TripOut.from_trip(t) for t in trips],
            total_seconds=total_seconds,
            total_hours=round(total_seconds / 3600.0, 2),
            total_distance_km=total_distance,
            parameters={
                "min_speed_kmh": self.activity_cfg.min_speed_kmh,
                "stop_tolerance_sec": self.activity_cfg.stop_tolerance_sec,
                "min_moving_seconds": self.activity_cfg.min_moving_seconds,
                "min_stop_seconds": self.activity_cfg.min_stop_seconds,
            },
        )
