"""
Telemetry Data Models

Plain value objects shared by the activity, fuel, distance and trip engines.
Value objects are frozen; DailyActivity is the one accumulator. Engines never
mutate their inputs.

Timestamps are timezone-aware datetimes. Naive values coming from a store
are treated as UTC.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, leave aware ones untouched."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _finite_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class GeoPoint:
    """A lat/lon pair. Either coordinate may be missing."""

    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        return (
            _finite_or_none(self.latitude) is not None
            and _finite_or_none(self.longitude) is not None
        )


@dataclass(frozen=True)
class Sample:
    """
    One telemetry reading.

    Attributes:
        timestamp: Fix time (timezone-aware)
        speed_kmh: Reported speed in km/h
        latitude / longitude: Position, None when the device had no fix
        attributes: Raw device attribute blob (JSON text or mapping)
        address: Address text stored with the position, if any
    """

    timestamp: datetime
    speed_kmh: float = 0.0
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    attributes: Any = None
    address: Any = None

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude)


def samples_from_rows(rows: Iterable[Dict[str, Any]]) -> List[Sample]:
    """
    Coerce store rows into Samples.

    Rows use the position table's column names (fixtime, speed, latitude,
    longitude, attributes, address). Missing columns are fine. Row order is
    preserved; the caller is responsible for delivering rows sorted by fixtime.
    """
    samples = []
    for row in rows:
        fixtime = row.get("fixtime")
        if fixtime is None:
            continue
        if isinstance(fixtime, str):
            fixtime = datetime.fromisoformat(fixtime.replace("Z", "+00:00"))
        speed = _finite_or_none(row.get("speed"))
        samples.append(
            Sample(
                timestamp=ensure_aware(fixtime),
                speed_kmh=speed if speed is not None else 0.0,
                latitude=_finite_or_none(row.get("latitude")),
                longitude=_finite_or_none(row.get("longitude")),
                attributes=row.get("attributes"),
                address=row.get("address"),
            )
        )
    return samples


@dataclass(frozen=True)
class DaySegment:
    """Part of a moving block that falls on one calendar day (seconds since local midnight)."""

    day: date
    start_second: int
    end_second: int

    @property
    def seconds(self) -> int:
        return self.end_second - self.start_second


@dataclass
class DailyActivity:
    """Per-day active seconds and moving segments for one query window."""

    seconds_by_day: Dict[date, int] = field(default_factory=dict)
    segments_by_day: Dict[date, List[DaySegment]] = field(default_factory=dict)

    def add(self, segment: DaySegment) -> None:
        self.seconds_by_day[segment.day] = (
            self.seconds_by_day.get(segment.day, 0) + segment.seconds
        )
        self.segments_by_day.setdefault(segment.day, []).append(segment)

    @property
    def total_seconds(self) -> int:
        return sum(self.seconds_by_day.values())

    @property
    def days_active(self) -> int:
        return sum(1 for sec in self.seconds_by_day.values() if sec > 0)


@dataclass(frozen=True)
class FuelSample:
    """One fuel-level reading (percent or liters, the engine does not care)."""

    time: datetime
    value: float


class FuelEventKind(str, Enum):
    """Direction of an abrupt fuel-level change"""

    DROP = "drop"
    REFUEL = "refuel"


@dataclass(frozen=True)
class FuelEvent:
    """An abrupt change between two consecutive fuel readings."""

    time: datetime
    from_value: float
    to_value: float
    delta: float
    kind: FuelEventKind


@dataclass(frozen=True)
class TripSegment:
    """One itemized trip of the monthly report."""

    day: date
    start_time: datetime
    end_time: datetime
    start_point: GeoPoint
    end_point: GeoPoint
    duration_seconds: float
    distance_km: float
    start_address: Optional[str] = None
    end_address: Optional[str] = None
