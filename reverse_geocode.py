"""
Reverse Geocoding - Address text for trip endpoints

Fallback chain used by AddressResolver:
1. Address stored with the position (plain text, JSON text or mapping)
2. Nominatim reverse lookup through a BoundedResolver (cached, capped)
3. "lat, lon" with 5 decimals
4. The configured missing-address text

Nominatim's usage policy asks for a descriptive User-Agent and low request
rates; keep GEOCODE_MAX_CONCURRENCY small.
"""

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import requests

from bounded_resolver import BoundedResolver
from errors import ExternalServiceError

logger = logging.getLogger(__name__)

STORED_ROAD_KEYS = ("road", "street")
GEOCODED_ROAD_KEYS = ("road", "pedestrian", "cycleway", "footway")
PLACE_KEYS = ("city", "town", "village")


def _first(mapping: Dict[str, Any], keys: Sequence[str]) -> Optional[Any]:
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


def _join_parts(mapping: Dict[str, Any], road_keys: Sequence[str]) -> Optional[str]:
    parts = [
        _first(mapping, road_keys),
        mapping.get("house_number"),
        mapping.get("postcode"),
        _first(mapping, PLACE_KEYS),
    ]
    parts = [str(p) for p in parts if p]
    return ", ".join(parts) if parts else None


def normalize_address(value: Any) -> Optional[str]:
    """
    Normalize an address stored alongside a position.

    Args:
        value: Plain text, JSON object text, or a mapping with Nominatim-style
            parts (road/street, house_number, postcode, city/town/village)

    Returns:
        "Road, No, Postcode, City" for structured input, the trimmed text for
        plain text, None for blank or unusable input
    """
    if not value:
        return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.startswith("{"):
            try:
                parsed = json.loads(text)
            except ValueError:
                return None
            if isinstance(parsed, dict):
                joined = _join_parts(parsed, STORED_ROAD_KEYS)
                if joined:
                    return joined
        return text

    if isinstance(value, dict):
        return _join_parts(value, STORED_ROAD_KEYS)

    return None


def coord_key(lat: float, lon: float, precision: int = 4) -> str:
    """
    Cache key from rounded coordinates ("lat,lon", fixed decimals).

    Precision 4 is roughly an 11 m grid.
    """
    return f"{lat:.{precision}f},{lon:.{precision}f}"


def format_coordinates(lat: float, lon: float) -> str:
    return f"{lat:.5f}, {lon:.5f}"


def _finite(*values) -> bool:
    return all(
        isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
        for v in values
    )


@dataclass(frozen=True)
class NominatimConfig:
    """Configuration for the Nominatim reverse API"""

    base_url: str = "https://nominatim.openstreetmap.org/reverse"
    user_agent: str = "fleet-activity-engine/1.0 (fleet)"
    timeout_seconds: float = 7.0
    precision: int = 4
    missing_address_text: str = "Address missing"

    @classmethod
    def from_settings(cls, settings) -> "NominatimConfig":
        geo = settings.geocode
        return cls(
            base_url=geo.url,
            user_agent=geo.user_agent,
            timeout_seconds=geo.timeout_seconds,
            precision=geo.precision,
            missing_address_text=geo.missing_address_text,
        )


class NominatimClient:
    """Thin blocking client for Nominatim /reverse"""

    def __init__(self, config: NominatimConfig):
        self.config = config

    def reverse(self, lat: float, lon: float) -> Optional[str]:
        """
        Reverse geocode one coordinate.

        Returns:
            Address text, None when the service knows nothing about the spot

        Raises:
            ExternalServiceError: transport failure, HTTP error or bad JSON
        """
        params = {"format": "jsonv2", "lat": lat, "lon": lon}
        logger.debug(f"Nominatim reverse {lat:.5f},{lon:.5f}")
        try:
            response = requests.get(
                self.config.base_url,
                params=params,
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as e:
            raise ExternalServiceError("nominatim", f"request failed: {e}") from e

        if not response.ok:
            raise ExternalServiceError(
                "nominatim",
                f"geocode_failed_{response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError("nominatim", "invalid JSON response") from e

        if not isinstance(data, dict):
            return None
        address = data.get("address") or {}
        resolved = _join_parts(address, GEOCODED_ROAD_KEYS) if isinstance(address, dict) else None
        return resolved or data.get("display_name") or None

    async def reverse_async(self, lat: float, lon: float) -> Optional[str]:
        """Run reverse() in a worker thread so the event loop keeps going."""
        return await asyncio.to_thread(self.reverse, lat, lon)


class AddressResolver:
    """
    Address text for a position, never failing.

    Geocoding goes through the shared BoundedResolver so concurrent callers
    are capped and repeated spots are served from the cache.
    """

    def __init__(
        self,
        client: Optional[NominatimClient],
        resolver: BoundedResolver,
        config: Optional[NominatimConfig] = None,
    ):
        self.client = client
        self.resolver = resolver
        self.config = config or (client.config if client else NominatimConfig())

    @classmethod
    def from_settings(cls, settings) -> "AddressResolver":
        config = NominatimConfig.from_settings(settings)
        return cls(
            client=NominatimClient(config),
            resolver=BoundedResolver.from_settings(settings),
            config=config,
        )

    async def geocode(self, lat: float, lon: float) -> Optional[str]:
        if self.client is None or not _finite(lat, lon):
            return None
        key = coord_key(lat, lon, self.config.precision)
        return await self.resolver.resolve(
            key, lambda: self.client.reverse_async(lat, lon)
        )

    async def lookup(self, stored_address: Any, lat: Optional[float], lon: Optional[float]) -> Optional[str]:
        """Real address text only (stored, then geocoded); None when neither is known."""
        normalized = normalize_address(stored_address)
        if normalized:
            return normalized
        return await self.geocode(lat, lon) or None

    def fallback(self, lat: Optional[float], lon: Optional[float]) -> str:
        """Placeholder text when no real address is known."""
        if _finite(lat, lon):
            return format_coordinates(lat, lon)
        return self.config.missing_address_text

    async def resolve(self, stored_address: Any, lat: Optional[float], lon: Optional[float]) -> str:
        return await self.lookup(stored_address, lat, lon) or self.fallback(lat, lon)
