"""
Geocoding

Address -> coordinates lookup against a Nominatim-compatible search endpoint.
Lookups are best-effort: every failure mode resolves to None.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import httpx

from .config import CheckoutConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoPoint:
    """Resolved coordinates."""

    lat: float
    lng: float
    display_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "display_name": self.display_name}


def build_full_address(*parts: Optional[str]) -> str:
    """Join address parts, skipping blanks."""
    cleaned: Iterable[str] = (str(p).strip() for p in parts if p)
    return ", ".join(p for p in cleaned if p)


def coerce_point(lat, lng, display_name: str = "") -> Optional[GeoPoint]:
    """GeoPoint from loosely typed values, or None when either is not a finite number."""
    try:
        la = float(lat)
        ln = float(lng)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(la) and math.isfinite(ln)):
        return None
    return GeoPoint(lat=la, lng=ln, display_name=display_name or "")


class GeocodeUpstreamError(Exception):
    """The geocoding service could not be reached or answered with an error."""


class Geocoder:
    """Free-text address lookup."""

    def __init__(self, config: Optional[CheckoutConfig] = None, client: Optional[httpx.Client] = None):
        self.config = config or CheckoutConfig()
        self.client = client or httpx.Client(timeout=self.config.geocoder_timeout)

    def search(self, query: str) -> Optional[GeoPoint]:
        """
        Look up an address.

        Returns None when the address is not found.
        Raises GeocodeUpstreamError on transport or upstream failures.
        """
        q = str(query or "").strip()
        if not q:
            return None

        try:
            response = self.client.get(
                self.config.geocoder_url,
                params={"format": "json", "limit": 1, "q": q},
                headers={
                    "User-Agent": self.config.geocoder_user_agent,
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise GeocodeUpstreamError(f"Geocode request failed: {e}") from e

        if response.status_code != 200:
            raise GeocodeUpstreamError(f"Geocode failed ({response.status_code})")

        try:
            data = response.json()
        except ValueError as e:
            raise GeocodeUpstreamError("Geocode returned invalid JSON") from e

        first = data[0] if isinstance(data, list) and data else None
        if not isinstance(first, dict) or not first.get("lat") or not first.get("lon"):
            return None
        return coerce_point(first.get("lat"), first.get("lon"), first.get("display_name") or "")

    def geocode(self, query: str) -> Optional[GeoPoint]:
        """Best-effort lookup: upstream failures are logged and reported as None."""
        try:
            return self.search(query)
        except GeocodeUpstreamError as e:
            logger.warning(f"Geocoding unavailable for '{query}': {e}")
            return None

    def close(self) -> None:
        self.client.close()
