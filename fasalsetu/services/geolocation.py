import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx

from fasalsetu.db import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

NOMINATIM_REVERSE = "https://nominatim.openstreetmap.org/reverse"
USER_AGENT = "FasalSetu/1.0"
LOCATION_MAX_AGE = timedelta(hours=24)

FALLBACK_LOCATION = {
    "latitude": 28.6872,
    "longitude": 77.2140,
    "accuracy": 1000,
    "city": "Delhi",
    "state": "Delhi",
    "country": "India",
}


def reverse_geocode(lat: float, lon: float) -> Dict[str, Optional[str]]:
    """City, state and country for a coordinate. Empty values on failure."""
    params = {"format": "json", "lat": lat, "lon": lon, "zoom": 10, "addressdetails": 1}
    try:
        resp = httpx.get(NOMINATIM_REVERSE, params=params, headers={"User-Agent": USER_AGENT}, timeout=10)
        resp.raise_for_status()
        address = resp.json().get("address") or {}
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Reverse geocoding failed for %s,%s: %s", lat, lon, e)
        return {"city": None, "state": None, "country": None}
    return {
        "city": address.get("city") or address.get("town") or address.get("village") or address.get("county"),
        "state": address.get("state"),
        "country": address.get("country"),
    }


def format_location(location: Dict[str, Any]) -> str:
    parts = [location.get(k) for k in ("city", "state", "country") if location.get(k)]
    if parts:
        return ", ".join(parts)
    return f"{location['latitude']:.4f}, {location['longitude']:.4f}"


def should_update_location(last_update, now=None) -> bool:
    updated = parse_timestamp(last_update)
    if updated is None:
        return True
    return (now or utcnow()) - updated > LOCATION_MAX_AGE


def resolve_location(
    lat: Optional[float],
    lon: Optional[float],
    accuracy: Optional[float] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    country: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a location record from client coordinates.

    Missing coordinates give the Delhi fallback. Missing place names are
    filled from Nominatim.
    """
    if lat is None or lon is None:
        logger.info("No coordinates supplied, using fallback location")
        return dict(FALLBACK_LOCATION)
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise ValueError(f"Invalid lat/lon values: lat={lat!r}, lon={lon!r}")
    location = {
        "latitude": lat,
        "longitude": lon,
        "accuracy": accuracy,
        "city": city,
        "state": state,
        "country": country,
    }
    if not (city or state):
        location.update({k: v for k, v in reverse_geocode(lat, lon).items() if v})
    return location
