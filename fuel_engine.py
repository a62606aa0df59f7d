"""
Fuel Engine - Fuel reading extraction and drop/refuel detection

1. extract_fuel_value: pulls a numeric fuel reading out of a device
   attribute blob using a priority-ordered list of candidate paths
2. build_fuel_series: one reading per minute (last one wins)
3. detect_fuel_drops / detect_refuels: flags abrupt changes between
   adjacent readings using an absolute OR percentage threshold

Adjacent pairs are judged independently. There is no smoothing or
deduplication, so a jittery sensor produces several events.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from telemetry_models import FuelEvent, FuelEventKind, FuelSample, Sample, ensure_aware

logger = logging.getLogger(__name__)

# |prev value| below this makes the percent condition unsatisfiable
PERCENT_BASE_EPSILON = 1e-9

_PATH_TOKEN = re.compile(r"[^.\[\]]+")


@dataclass(frozen=True)
class FuelDropConfig:
    """Drop thresholds; an event fires when either is reached"""

    drop_liters: float
    drop_percent: float
    # Carried for configuration compatibility; detection does not use it
    window_minutes: Optional[float] = None

    @classmethod
    def from_settings(cls, settings) -> "FuelDropConfig":
        return cls(
            drop_liters=settings.fuel.drop_liters,
            drop_percent=settings.fuel.drop_percent,
            window_minutes=settings.fuel.window_minutes,
        )


@dataclass(frozen=True)
class RefuelConfig:
    """Refuel thresholds; an event fires when either is reached"""

    refuel_liters: float
    refuel_percent: float

    @classmethod
    def from_settings(cls, settings) -> "RefuelConfig":
        return cls(
            refuel_liters=settings.fuel.refuel_liters,
            refuel_percent=settings.fuel.refuel_percent,
        )


def parse_fuel_keys(text: str) -> List[str]:
    """Split "fuel,fuel.level,io48" into candidate keys."""
    return [key.strip() for key in (text or "").split(",") if key.strip()]


def _to_number(value: Any) -> Optional[float]:
    """Numeric coercion for attribute values. bool/None/'' are not numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _lookup(obj: Any, key: str) -> Any:
    """Resolve a bare key or a dotted / bracketed path. Missing = None."""
    if "." not in key and "[" not in key:
        return obj.get(key) if isinstance(obj, dict) else None

    current = obj
    for token in _PATH_TOKEN.findall(key):
        token = token.strip().strip("'\"")
        if isinstance(current, dict):
            current = current.get(token)
        elif isinstance(current, list) and token.isdigit():
            idx = int(token)
            current = current[idx] if idx < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def extract_fuel_value(attributes: Any, candidate_keys: Sequence[str]) -> Optional[float]:
    """
    Extract a fuel reading from a device attribute blob.

    Args:
        attributes: JSON text, an already-decoded mapping, or None
        candidate_keys: Paths tried in order, e.g. ["fuel", "fuel.level", "io48"]

    Returns:
        The first finite number found, or None (no blob, unparseable text,
        no candidate matched)

    Examples:
        >>> extract_fuel_value('{"io48": "55"}', ["fuel", "io48"])
        55.0
        >>> extract_fuel_value("not json", ["fuel"]) is None
        True
    """
    if attributes is None:
        return None

    obj = attributes
    if isinstance(attributes, (str, bytes)):
        try:
            obj = json.loads(attributes)
        except (ValueError, TypeError):
            return None

    for key in candidate_keys:
        number = _to_number(_lookup(obj, key))
        if number is not None:
            return number
    return None


def build_fuel_series(
    samples: Iterable[Sample], candidate_keys: Sequence[str]
) -> List[FuelSample]:
    """
    Downsample to one reading per minute (the last reading of each minute).

    Minutes are absolute epoch minutes, so the repeated hour after a DST
    fall-back keeps both of its readings. Samples without a fuel reading are
    skipped. Output is ascending by time.
    """
    by_minute: Dict[int, FuelSample] = {}
    for sample in samples:
        value = extract_fuel_value(sample.attributes, candidate_keys)
        if value is None:
            continue
        ts = ensure_aware(sample.timestamp)
        by_minute[int(ts.timestamp() // 60)] = FuelSample(time=ts, value=value)

    return sorted(by_minute.values(), key=lambda s: s.time)


def _percent_of(delta: float, base: float) -> Optional[float]:
    if not math.isfinite(base) or abs(base) < PERCENT_BASE_EPSILON:
        return None
    return delta / base * 100.0


def _detect(
    series: Sequence[FuelSample],
    kind: FuelEventKind,
    threshold_abs: float,
    threshold_pct: float,
) -> List[FuelEvent]:
    events: List[FuelEvent] = []
    for prev, cur in zip(series, series[1:]):
        if kind is FuelEventKind.DROP:
            delta = prev.value - cur.value
        else:
            delta = cur.value - prev.value

        pct = _percent_of(delta, prev.value)
        if delta >= threshold_abs or (pct is not None and pct >= threshold_pct):
            events.append(
                FuelEvent(
                    time=cur.time,
                    from_value=prev.value,
                    to_value=cur.value,
                    delta=delta,
                    kind=kind,
                )
            )
    return events


def detect_fuel_drops(series: Sequence[FuelSample], cfg: FuelDropConfig) -> List[FuelEvent]:
    """
    Flag abrupt fuel decreases.

    An event is emitted at cur.time when prev.value - cur.value >= drop_liters
    or the decrease relative to prev.value reaches drop_percent.
    """
    events = _detect(series, FuelEventKind.DROP, cfg.drop_liters, cfg.drop_percent)
    if events:
        logger.debug(f"Fuel: {len(events)} drop(s) in {len(series)} readings")
    return events


def detect_refuels(series: Sequence[FuelSample], cfg: RefuelConfig) -> List[FuelEvent]:
    """Flag abrupt fuel increases (mirror of detect_fuel_drops)."""
    events = _detect(series, FuelEventKind.REFUEL, cfg.refuel_liters, cfg.refuel_percent)
    if events:
        logger.debug(f"Fuel: {len(events)} refuel(s) in {len(series)} readings")
    return events
