"""
Distance Engine - Great-circle distance with GPS jump rejection

Distances are approximate: straight lines between fixes, no map matching.
A leg whose implied speed is physically implausible is treated as a GPS
jump and contributes nothing.
"""

import logging
from math import atan2, cos, radians, sin, sqrt
from typing import Optional, Sequence

from telemetry_models import GeoPoint, Sample, ensure_aware

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def _coords(p) -> Optional[tuple]:
    point = p.point if isinstance(p, Sample) else p
    if point is None or not isinstance(point, GeoPoint) or not point.is_valid:
        return None
    return float(point.latitude), float(point.longitude)


def distance_km(a, b) -> float:
    """
    Haversine distance between two GeoPoints (or Samples) in km.

    Returns 0.0 when either side has missing or non-finite coordinates.
    """
    ca = _coords(a)
    cb = _coords(b)
    if ca is None or cb is None:
        return 0.0

    lat1, lon1, lat2, lon2 = map(radians, [ca[0], ca[1], cb[0], cb[1]])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(h), sqrt(1 - h))

    return EARTH_RADIUS_KM * c


def leg_km(prev: Sample, cur: Sample, max_plausible_speed_kmh: Optional[float]) -> float:
    """
    Distance contributed by one leg between consecutive samples.

    Args:
        prev: Earlier sample
        cur: Later sample
        max_plausible_speed_kmh: Implied speeds above this are GPS jumps.
            None disables the check.

    Returns:
        Leg distance in km, 0.0 for zero/negative elapsed time or a rejected jump
    """
    dist = distance_km(prev, cur)
    if dist == 0.0:
        return 0.0

    elapsed = (
        ensure_aware(cur.timestamp).timestamp() - ensure_aware(prev.timestamp).timestamp()
    )
    if elapsed <= 0:
        return 0.0

    if max_plausible_speed_kmh is not None:
        implied_speed = dist / (elapsed / 3600.0)
        if implied_speed > max_plausible_speed_kmh:
            logger.debug(
                f"GPS jump rejected: {dist:.2f} km in {elapsed:.0f}s "
                f"({implied_speed:.0f} km/h)"
            )
            return 0.0

    return dist


def total_distance_km(
    samples: Sequence[Sample], max_plausible_speed_kmh: Optional[float]
) -> float:
    """Sum of leg_km over consecutive samples."""
    return sum(
        leg_km(prev, cur, max_plausible_speed_kmh)
        for prev, cur in zip(samples, samples[1:])
    )
