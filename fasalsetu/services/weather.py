import logging
from typing import Any, Dict, List, Optional

import httpx

from fasalsetu import config

logger = logging.getLogger(__name__)

WEATHERAPI_BASE = "https://api.weatherapi.com/v1/forecast.json"
OPEN_METEO_BASE = "https://api.open-meteo.com/v1/forecast"

WMO_CODES = {
    0: "Clear",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Fog",
    51: "Light drizzle",
    53: "Drizzle",
    55: "Heavy drizzle",
    61: "Light rain",
    63: "Moderate rain",
    65: "Heavy rain",
    66: "Freezing rain",
    67: "Freezing rain",
    71: "Light snow",
    73: "Snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Light rain shower",
    81: "Rain shower",
    82: "Torrential rain shower",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Thunderstorm with hail",
}


def _check_coords(lat: Optional[float], lon: Optional[float]) -> None:
    if lat is None or lon is None:
        raise ValueError("location requires lat and lon")
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        raise ValueError(f"Invalid lat/lon values: lat={lat!r}, lon={lon!r}")


def fetch_forecast(lat: float, lon: float, days: int = 7) -> Dict[str, Any]:
    """Daily forecast in weatherapi.com's shape.

    Falls back to Open-Meteo (no key needed) when the key is missing or the
    primary provider errors. The returned dict carries a `source` field.
    """
    _check_coords(lat, lon)
    days = max(1, min(int(days), 14))
    api_key = config.get_weather_api_key()
    if api_key:
        params = {"key": api_key, "q": f"{lat},{lon}", "days": days, "aqi": "no", "alerts": "yes"}
        try:
            resp = httpx.get(WEATHERAPI_BASE, params=params, timeout=20)
            resp.raise_for_status()
            data = resp.json()
            data["source"] = "weatherapi"
            return data
        except Exception as e:
            logger.warning("weatherapi.com failed, falling back to Open-Meteo: %s", e)
    try:
        return fetch_forecast_open_meteo(lat, lon, days=days)
    except Exception as e:
        raise ValueError(f"Weather API error: {e}")


def _at(values: List[Any], i: int, default: Any = 0.0) -> Any:
    if i < len(values) and values[i] is not None:
        return values[i]
    return default


def fetch_forecast_open_meteo(lat: float, lon: float, days: int = 7) -> Dict[str, Any]:
    params = {
        "latitude": lat,
        "longitude": lon,
        "daily": ",".join([
            "temperature_2m_max",
            "temperature_2m_min",
            "temperature_2m_mean",
            "precipitation_sum",
            "precipitation_probability_max",
            "wind_speed_10m_max",
            "relative_humidity_2m_mean",
            "uv_index_max",
            "weather_code",
        ]),
        "current": "temperature_2m,relative_humidity_2m,apparent_temperature,wind_speed_10m,weather_code",
        "wind_speed_unit": "kmh",
        "timezone": "auto",
        "forecast_days": days,
    }
    with httpx.Client(timeout=20.0) as client:
        resp = client.get(OPEN_METEO_BASE, params=params)
        resp.raise_for_status()
        raw = resp.json()

    d = raw.get("daily", {})
    forecastday = []
    for i, day in enumerate(d.get("time", [])):
        tmax = float(_at(d.get("temperature_2m_max", []), i))
        tmin = float(_at(d.get("temperature_2m_min", []), i))
        forecastday.append({
            "date": day,
            "day": {
                "maxtemp_c": tmax,
                "mintemp_c": tmin,
                "avgtemp_c": float(_at(d.get("temperature_2m_mean", []), i, (tmax + tmin) / 2)),
                "maxwind_kph": float(_at(d.get("wind_speed_10m_max", []), i)),
                "totalprecip_mm": float(_at(d.get("precipitation_sum", []), i)),
                "avghumidity": float(_at(d.get("relative_humidity_2m_mean", []), i)),
                "daily_chance_of_rain": float(_at(d.get("precipitation_probability_max", []), i)),
                "uv": float(_at(d.get("uv_index_max", []), i)),
                "condition": {"text": WMO_CODES.get(_at(d.get("weather_code", []), i, None), "")},
            },
        })

    cur = raw.get("current", {})
    current = {
        "temp_c": cur.get("temperature_2m"),
        "humidity": cur.get("relative_humidity_2m"),
        "feelslike_c": cur.get("apparent_temperature"),
        "wind_kph": cur.get("wind_speed_10m") or 0.0,
        "condition": {"text": WMO_CODES.get(cur.get("weather_code"), "")},
    }
    return {
        "source": "open-meteo",
        "location": {"lat": lat, "lon": lon},
        "current": current,
        "forecast": {"forecastday": forecastday},
    }


def forecast_days(forecast: Dict[str, Any]) -> List[Dict[str, Any]]:
    return (forecast.get("forecast") or {}).get("forecastday") or []


def weather_summary(forecast: Dict[str, Any]) -> Dict[str, Any]:
    """Condensed current conditions used by the advisory prompt and UI cards."""
    current = forecast.get("current") or {}
    days = forecast_days(forecast)
    today = days[0]["day"] if days else {}
    return {
        "temperature": current.get("temp_c"),
        "humidity": current.get("humidity"),
        "rainfall": today.get("totalprecip_mm", 0.0),
        "forecast": (today.get("condition") or {}).get("text", ""),
        "condition": (current.get("condition") or {}).get("text", ""),
        "wind_speed": current.get("wind_kph"),
    }
