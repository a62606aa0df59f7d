"""
Pydantic models for the structured results handed to the presentation layer
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from telemetry_models import DaySegment, FuelEvent, FuelEventKind, FuelSample, TripSegment


class SegmentOut(BaseModel):
    """Moving segment inside one day (seconds since local midnight)"""

    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @classmethod
    def from_segment(cls, segment: DaySegment) -> "SegmentOut":
        return cls(start=segment.start_second, end=segment.end_second)


class DayActivity(BaseModel):
    """Active time of one calendar day"""

    day: date
    active_seconds: int = Field(ge=0)
    segments: List[SegmentOut] = Field(default_factory=list)


class MonthActivity(BaseModel):
    """Every day of a month, zero-filled"""

    device_id: Any
    month: str
    days: List[DayActivity]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "device_id": 7,
                "month": "2024-01",
                "days": [
                    {
                        "day": "2024-01-01",
                        "active_seconds": 5400,
                        "segments": [{"start": 28800, "end": 34200}],
                    }
                ],
            }
        }
    )


class FleetDeviceActivity(BaseModel):
    """Monthly activity summary of one device"""

    device_id: Any
    name: Optional[str] = None
    active_seconds: int = Field(ge=0)
    days_active: int = Field(ge=0)


class FleetActivity(BaseModel):
    """Monthly activity of the whole fleet, busiest first"""

    month: str
    devices: List[FleetDeviceActivity]
    total_active_seconds: int = Field(ge=0)


class FuelPoint(BaseModel):
    time: datetime
    fuel: float

    @classmethod
    def from_sample(cls, sample: FuelSample) -> "FuelPoint":
        return cls(time=sample.time, fuel=sample.value)


class FuelAlert(BaseModel):
    """Abrupt fuel change between two consecutive readings"""

    time: datetime
    from_value: float
    to_value: float
    delta: float
    kind: FuelEventKind

    @classmethod
    def from_event(cls, event: FuelEvent) -> "FuelAlert":
        return cls(
            time=event.time,
            from_value=event.from_value,
            to_value=event.to_value,
            delta=event.delta,
            kind=event.kind,
        )


class FuelMonth(BaseModel):
    """Per-minute fuel series of a month with detected events"""

    device_id: Any
    month: str
    latest: Optional[FuelPoint] = None
    series: List[FuelPoint] = Field(default_factory=list)
    alerts: List[FuelAlert] = Field(default_factory=list)
    refuels: List[FuelAlert] = Field(default_factory=list)


class FuelStatus(BaseModel):
    """Current fuel state of one device for the dispatcher view"""

    device_id: Any
    fuel: Optional[float] = None
    fuel_alert: Optional[FuelAlert] = None
    fuel_error: bool = False


class TripOut(BaseModel):
    """One row of the itemized trip list"""

    day: date
    start_time: datetime
    end_time: datetime
    start_address: Optional[str] = None
    end_address: Optional[str] = None
    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    duration_seconds: float = Field(ge=0)
    distance_km: float = Field(ge=0)

    @classmethod
    def from_trip(cls, trip: TripSegment) -> "TripOut":
        return cls(
            day=trip.day,
            start_time=trip.start_time,
            end_time=trip.end_time,
            start_address=trip.start_address,
            end_address=trip.end_address,
            start_latitude=trip.start_point.latitude,
            start_longitude=trip.start_point.longitude,
            end_latitude=trip.end_point.latitude,
            end_longitude=trip.end_point.longitude,
            duration_seconds=trip.duration_seconds,
            distance_km=trip.distance_km,
        )


class ReportDayRow(BaseModel):
    """One day of the monthly logbook report"""

    day: date
    start_time: Optional[datetime] = None
    start_address: Optional[str] = None
    end_time: Optional[datetime] = None
    end_address: Optional[str] = None
    distance_km: float = Field(ge=0)
    active_seconds: int = Field(ge=0)
    active_hours: float = Field(ge=0)
    segments: List[SegmentOut] = Field(default_factory=list)


class ActivityReport(BaseModel):
    """Everything needed to render the monthly activity report"""

    device_id: Any
    device_name: Optional[str] = None
    month: str
    rows: List[ReportDayRow]
    trips: List[TripOut] = Field(default_factory=list)
    total_seconds: int = Field(ge=0)
    total_hours: float = Field(ge=0)
    total_distance_km: float = Field(ge=0)
    parameters: Dict[str, float] = Field(default_factory=dict)
