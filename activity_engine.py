"""
Activity Engine - Moving-block detection and day splitting

Turns one vehicle's chronologically ordered samples into per-day active
seconds and per-day moving segments.

State machine (single linear pass):
1. A data gap >= min_stop_seconds always ends the open block
2. A sample at or above min_speed_kmh opens a block (if none) and advances last_move
3. A slow sample ends the block once idle >= min_stop_seconds; shorter dips,
   including those beyond stop_tolerance_sec, leave it open
4. Blocks shorter than min_moving_seconds are discarded whole

Closed blocks are cut at local midnight so no segment crosses a day boundary.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Union
from zoneinfo import ZoneInfo

from errors import UnorderedInputError
from settings import get_settings
from telemetry_models import DailyActivity, DaySegment, Sample, ensure_aware

logger = logging.getLogger(__name__)

TimezoneLike = Union[tzinfo, str, None]


@dataclass(frozen=True)
class ActivityConfig:
    """Thresholds for moving-block detection"""

    min_speed_kmh: float  # at or above = moving
    min_moving_seconds: float  # shorter blocks are dropped
    min_stop_seconds: float  # gap / idle that force-ends a block
    stop_tolerance_sec: float  # brief dips below min speed

    @classmethod
    def from_settings(cls, settings=None) -> "ActivityConfig":
        if settings is None:
            settings = get_settings()
        act = settings.activity
        return cls(
            min_speed_kmh=act.min_speed_kmh,
            min_moving_seconds=act.min_moving_seconds,
            min_stop_seconds=act.min_stop_seconds,
            stop_tolerance_sec=act.stop_tolerance_sec,
        )


def resolve_tz(tz: TimezoneLike) -> tzinfo:
    """Accept a tzinfo, an IANA name or None (UTC)."""
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def epoch_seconds(dt: datetime) -> int:
    """Whole epoch seconds (floor), the unit all duration math uses."""
    return math.floor(ensure_aware(dt).timestamp())


def local_midnight(day: date, tz: tzinfo) -> int:
    """Epoch seconds of local midnight starting `day` in `tz`."""
    return epoch_seconds(datetime.combine(day, time.min, tzinfo=tz))


def split_block_by_day(
    start: datetime, end: datetime, tz: TimezoneLike = None
) -> List[DaySegment]:
    """
    Cut [start, end] at local midnights.

    Args:
        start: Block start (first moving sample)
        end: Block end (last moving sample)
        tz: Timezone whose calendar days are used

    Returns:
        One DaySegment per calendar day touched, chronological. The pieces'
        seconds sum to end - start exactly. Empty for zero-length blocks.

    Examples:
        23:50 -> 00:10 (UTC) gives two pieces of 600 s each:
        (Jan 31, 85800 -> 86400) and (Feb 1, 0 -> 600)
    """
    zone = resolve_tz(tz)
    cur = epoch_seconds(start)
    stop_at = epoch_seconds(end)
    pieces: List[DaySegment] = []

    while cur < stop_at:
        day = datetime.fromtimestamp(cur, zone).date()
        day_start = local_midnight(day, zone)
        next_day_start = local_midnight(day + timedelta(days=1), zone)
        stop = min(next_day_start, stop_at)
        pieces.append(
            DaySegment(
                day=day,
                start_second=cur - day_start,
                end_second=stop - day_start,
            )
        )
        cur = stop

    return pieces


class _BlockTracker:
    """Open-block state for one pass over one vehicle's samples."""

    def __init__(self, cfg: ActivityConfig, zone: tzinfo, result: DailyActivity):
        self.cfg = cfg
        self.zone = zone
        self.result = result
        self.block_start: Optional[datetime] = None
        self.last_move: Optional[datetime] = None
        self.discarded = 0

    @property
    def is_open(self) -> bool:
        return self.block_start is not None

    def move(self, ts: datetime) -> None:
        if self.block_start is None:
            self.block_start = ts
        self.last_move = ts

    def flush(self) -> None:
        if self.block_start is not None and self.last_move is not None:
            duration = epoch_seconds(self.last_move) - epoch_seconds(self.block_start)
            if duration >= self.cfg.min_moving_seconds:
                for piece in split_block_by_day(
                    self.block_start, self.last_move, self.zone
                ):
                    self.result.add(piece)
            else:
                self.discarded += 1
        self.block_start = None
        self.last_move = None


def compute_daily_activity(
    samples: Iterable[Sample],
    cfg: ActivityConfig,
    tz: TimezoneLike = None,
    strict: bool = False,
) -> DailyActivity:
    """
    Compute per-day active seconds and moving segments.

    Args:
        samples: One vehicle's samples in non-decreasing timestamp order
        cfg: Detection thresholds
        tz: Timezone for calendar days (default UTC)
        strict: Raise UnorderedInputError on a timestamp going backwards.
            When False the ordering precondition is not checked and the
            result for unordered input is unspecified.

    Returns:
        DailyActivity (empty for empty input)
    """
    zone = resolve_tz(tz)
    result = DailyActivity()
    tracker = _BlockTracker(cfg, zone, result)
    prev_time: Optional[datetime] = None

    for index, sample in enumerate(samples):
        ts = ensure_aware(sample.timestamp)

        if prev_time is not None:
            gap = ts.timestamp() - prev_time.timestamp()
            if strict and gap < 0:
                raise UnorderedInputError(index, prev_time, ts)
            if gap >= cfg.min_stop_seconds:
                # Stopped reporting = stopped
                tracker.flush()

        if sample.speed_kmh >= cfg.min_speed_kmh:
            tracker.move(ts)
        elif tracker.is_open:
            idle = ts.timestamp() - tracker.last_move.timestamp()
            if idle >= cfg.min_stop_seconds:
                tracker.flush()
            elif idle > cfg.stop_tolerance_sec:
                # Beyond the tolerance band but short of a stop: keep the block
                pass

        prev_time = ts

    tracker.flush()

    logger.debug(
        f"Activity: {len(result.seconds_by_day)} active days, "
        f"{result.total_seconds}s moving, {tracker.discarded} short blocks dropped"
    )
    return result
