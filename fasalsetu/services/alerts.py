"""Rule-based farm alerts from a 7-day forecast plus crop, soil and disease context."""
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from fasalsetu.services.weather import forecast_days

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
MAX_ALERTS = 6
MIN_ALERTS = 3
FILLER_TARGET = 4


class SmartAlert(BaseModel):
    id: str
    type: str
    title: str
    description: str
    priority: str
    action_required: str
    affected_crops: List[str] = Field(default_factory=list)
    date: str
    forecast_day: Optional[Dict[str, Any]] = None


def _parse_day(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def format_day(value: str, today: date) -> str:
    d = _parse_day(value)
    if d is None:
        return str(value)
    if d == today:
        return "Today"
    if d == today + timedelta(days=1):
        return "Tomorrow"
    return f"{d.strftime('%b')} {d.day}"


def _days_away(value: str, today: date) -> int:
    d = _parse_day(value)
    return (d - today).days if d else 0


def _round(x: float) -> int:
    return int(float(x) + 0.5)


def _rain_alert(day, crop_names, today) -> SmartAlert:
    d = day["day"]
    away = _days_away(day["date"], today)
    timing = "today" if away == 0 else "tomorrow" if away == 1 else f"in {away} days"
    return SmartAlert(
        id=f"rain-{day['date']}",
        type="weather",
        title=f"Rain Expected {format_day(day['date'], today)}",
        description=(
            f"{d['daily_chance_of_rain']:g}% chance of rain {timing} "
            f"({_round(d['totalprecip_mm'])}mm expected). {d['condition']['text']}."
        ),
        priority="high" if d["totalprecip_mm"] > 20 else "medium",
        action_required="Delay pesticide/fungicide application. Postpone irrigation. Ensure proper drainage.",
        affected_crops=crop_names,
        date=day["date"],
        forecast_day=day,
    )


def _heavy_rain_alert(day, crop_names, today) -> SmartAlert:
    return SmartAlert(
        id=f"heavy-rain-{day['date']}",
        type="weather",
        title=f"Heavy Rain Alert - {format_day(day['date'], today)}",
        description=f"Heavy rainfall expected: {day['day']['totalprecip_mm']:g}mm. Risk of waterlogging and soil erosion.",
        priority="critical",
        action_required="Check drainage systems. Protect young plants. Avoid field operations. Monitor for fungal diseases.",
        affected_crops=crop_names,
        date=day["date"],
        forecast_day=day,
    )


def _heat_alert(day, crop_names, today) -> SmartAlert:
    t = day["day"]["maxtemp_c"]
    return SmartAlert(
        id=f"heat-{day['date']}",
        type="weather",
        title=f"High Temperature Alert - {format_day(day['date'], today)}",
        description=f"Maximum temperature: {t:g}°C. Heat stress risk for crops.",
        priority="critical" if t > 40 else "high",
        action_required="Increase irrigation frequency. Apply mulch. Provide shade for sensitive crops. Monitor for heat stress.",
        affected_crops=crop_names,
        date=day["date"],
        forecast_day=day,
    )


def _cold_alert(day, crop_names, today) -> SmartAlert:
    t = day["day"]["mintemp_c"]
    return SmartAlert(
        id=f"cold-{day['date']}",
        type="weather",
        title=f"Low Temperature Alert - {format_day(day['date'], today)}",
        description=f"Minimum temperature: {t:g}°C. Risk of frost damage.",
        priority="critical" if t < 5 else "high",
        action_required="Protect sensitive crops. Consider frost covers. Delay sowing if planned. Monitor for frost damage.",
        affected_crops=crop_names,
        date=day["date"],
        forecast_day=day,
    )


def _wind_alert(day, crop_names, today) -> SmartAlert:
    w = day["day"]["maxwind_kph"]
    return SmartAlert(
        id=f"wind-{day['date']}",
        type="weather",
        title=f"High Wind Alert - {format_day(day['date'], today)}",
        description=f"Strong winds expected: {w:g} km/h. Risk of crop lodging.",
        priority="critical" if w > 60 else "high",
        action_required="Stake tall plants. Secure greenhouse structures. Avoid spraying operations. Check for lodging.",
        affected_crops=crop_names,
        date=day["date"],
        forecast_day=day,
    )


def _disease_risk_alert(day, crop_names, diseases, today) -> SmartAlert:
    names = ", ".join(d.get("disease_name") or "Unknown" for d in diseases)
    return SmartAlert(
        id=f"disease-risk-{day['date']}",
        type="disease",
        title=f"Disease Risk Alert - {format_day(day['date'], today)}",
        description=(
            f"High humidity ({day['day']['avghumidity']:g}%) + recent diseases detected. "
            "Favorable conditions for disease spread."
        ),
        priority="high",
        action_required=f"Monitor for {names}. Apply preventive fungicides. Improve air circulation. Remove infected plants.",
        affected_crops=crop_names,
        date=day["date"],
        forecast_day=day,
    )


def _uv_alert(day, today) -> SmartAlert:
    return SmartAlert(
        id=f"uv-{day['date']}",
        type="weather",
        title=f"High UV Index - {format_day(day['date'], today)}",
        description=f"UV index: {day['day']['uv']:g}. Very high sun exposure.",
        priority="low",
        action_required="Wear protective clothing. Apply sunscreen. Work during early morning or late evening.",
        affected_crops=[],
        date=day["date"],
        forecast_day=day,
    )


def drainage_speed(sand_pct: float) -> str:
    if sand_pct > 60:
        return "fast"
    if sand_pct > 40:
        return "moderate"
    return "slow"


def _irrigation_alert(day, crop_names, soil) -> SmartAlert:
    speed = drainage_speed((soil or {}).get("sand_pct") or 0)
    watering = "Water deeply and frequently" if speed == "fast" else "Water moderately"
    return SmartAlert(
        id="irrigation-needed",
        type="irrigation",
        title="Irrigation Recommended",
        description=(
            "No significant rain expected for next several days. "
            f"Soil moisture may be low, especially for {speed}-draining soils."
        ),
        priority="medium",
        action_required=f"Check soil moisture and water crops if needed. {watering}.",
        affected_crops=crop_names,
        date=day["date"],
        forecast_day=day,
    )


def _fertilizer_alert(soil, crop_names, today) -> Optional[SmartAlert]:
    nitrogen = soil.get("total_nitrogen") or 0
    oc = soil.get("organic_carbon") or 0
    if nitrogen >= 0.1 and oc >= 5:
        return None
    return SmartAlert(
        id="fertilizer-alert",
        type="fertilizer",
        title="Soil Nutrient Alert",
        description=(
            f"Low soil nutrients detected. Nitrogen: {nitrogen * 1000:.1f} g/kg, "
            f"Organic Carbon: {oc:.1f} g/kg."
        ),
        priority="high",
        action_required="Apply nitrogen fertilizer (Urea/DAP). Add organic matter (compost/manure). Consider soil testing.",
        affected_crops=crop_names,
        date=today.isoformat(),
    )


def _harvest_alerts(crops, today) -> List[SmartAlert]:
    alerts = []
    for crop in crops:
        harvest = crop.get("expected_harvest_date")
        if not harvest:
            continue
        days = _days_away(harvest, today)
        if 0 < days <= 14:
            alerts.append(SmartAlert(
                id=f"harvest-{crop.get('crop_id')}",
                type="harvest",
                title=f"Harvest Approaching - {crop.get('crop_name')}",
                description=f"Expected harvest in {days} days ({format_day(harvest, today)}).",
                priority="high" if days <= 7 else "medium",
                action_required="Prepare harvesting equipment. Arrange labor. Check market prices. Plan storage.",
                affected_crops=[crop.get("crop_name")],
                date=str(harvest)[:10],
            ))
    return alerts


def _filler_alerts(days, crops, crop_names, soil, current_count, today) -> List[SmartAlert]:
    needed = max(0, FILLER_TARGET - current_count)
    if needed == 0 or not days:
        return []
    first = days[0]
    second = days[1] if len(days) > 1 else days[0]
    fillers: List[SmartAlert] = []

    fillers.append(SmartAlert(
        id="weather-summary",
        type="weather",
        title="Weather Outlook",
        description=(
            f"Current: {_round(first['day']['avgtemp_c'])}°C, {first['day']['condition']['text']}. "
            f"Tomorrow: {_round(second['day']['avgtemp_c'])}°C, {second['day']['condition']['text']}."
        ),
        priority="low",
        action_required="Plan field activities based on weather conditions. Check forecast daily.",
        affected_crops=crop_names,
        date=first["date"],
        forecast_day=first,
    ))

    if len(fillers) < needed and soil:
        ph = soil.get("ph_level") or 7
        status = "acidic" if ph < 6 else "alkaline" if ph > 8 else "neutral"
        fillers.append(SmartAlert(
            id="soil-monitoring",
            type="soil",
            title="Soil Health Check",
            description=f"Soil pH: {ph:.1f} ({status}). Regular monitoring helps optimize crop growth.",
            priority="low",
            action_required="Monitor soil moisture levels. Consider soil testing if crop performance declines.",
            affected_crops=crop_names,
            date=today.isoformat(),
        ))

    if len(fillers) < needed and crops:
        fillers.append(SmartAlert(
            id="crop-monitoring",
            type="pest",
            title="Regular Crop Inspection",
            description=f"Monitor your {', '.join(crop_names)} for signs of pests, diseases, or nutrient deficiencies.",
            priority="low",
            action_required="Walk through fields daily. Check leaves, stems, and soil. Use AI disease detection for suspicious symptoms.",
            affected_crops=crop_names,
            date=today.isoformat(),
        ))

    if len(fillers) < needed:
        avg_temp = (first["day"]["avgtemp_c"] + second["day"]["avgtemp_c"]) / 2
        avg_hum = (first["day"]["avghumidity"] + second["day"]["avghumidity"]) / 2
        fillers.append(SmartAlert(
            id="optimal-conditions",
            type="weather",
            title="Favorable Growing Conditions",
            description=f"Temperature: {_round(avg_temp)}°C, Humidity: {_round(avg_hum)}%. Good conditions for crop growth.",
            priority="low",
            action_required="Good time for routine maintenance, weeding, and field inspections.",
            affected_crops=crop_names,
            date=first["date"],
            forecast_day=first,
        ))

    if len(fillers) < needed:
        week_rain = sum(d["day"]["totalprecip_mm"] for d in days)
        fillers.append(SmartAlert(
            id="weekly-planning",
            type="irrigation",
            title="Week Ahead Planning",
            description=f"Expected rainfall this week: {_round(week_rain)}mm. Plan irrigation and field work accordingly.",
            priority="low",
            action_required="Schedule field activities during dry periods. Prepare for any expected rain.",
            affected_crops=crop_names,
            date=first["date"],
        ))

    return fillers[:needed]


def generate_smart_alerts(
    forecast: Dict[str, Any],
    crops: List[Dict[str, Any]],
    soil: Optional[Dict[str, Any]] = None,
    recent_diseases: Optional[List[Dict[str, Any]]] = None,
    today: Optional[date] = None,
) -> List[SmartAlert]:
    """Evaluate every rule against the forecast and return at most six alerts.

    `soil` is a farm_soil_data row; `recent_diseases` are disease logs from
    the last seven days. Output is ordered critical, high, medium, low.
    """
    today = today or date.today()
    recent_diseases = recent_diseases or []
    days = forecast_days(forecast)
    crop_names = [c.get("crop_name") for c in crops if c.get("crop_name")]
    alerts: List[SmartAlert] = []

    days_without_rain = 0
    for i, day in enumerate(days):
        d = day["day"]
        if not (d["daily_chance_of_rain"] > 30 or d["totalprecip_mm"] > 1):
            days_without_rain += 1

        if d["totalprecip_mm"] > 50:
            alerts.append(_heavy_rain_alert(day, crop_names, today))
        elif d["daily_chance_of_rain"] > 70 and d["totalprecip_mm"] > 5:
            alerts.append(_rain_alert(day, crop_names, today))

        if d["maxtemp_c"] > 35:
            alerts.append(_heat_alert(day, crop_names, today))
        if d["mintemp_c"] < 10:
            alerts.append(_cold_alert(day, crop_names, today))
        if d["maxwind_kph"] > 40:
            alerts.append(_wind_alert(day, crop_names, today))
        if i == 0 and d["avghumidity"] > 80 and recent_diseases:
            alerts.append(_disease_risk_alert(day, crop_names, recent_diseases, today))
        if i < 2 and d.get("uv", 0) > 8:
            alerts.append(_uv_alert(day, today))

    if days_without_rain >= 3:
        dry_day = next(
            (day for day in days if day["day"]["daily_chance_of_rain"] < 20 and day["day"]["totalprecip_mm"] < 2),
            None,
        )
        if dry_day:
            alerts.append(_irrigation_alert(dry_day, crop_names, soil))

    if soil:
        fert = _fertilizer_alert(soil, crop_names, today)
        if fert:
            alerts.append(fert)

    alerts.extend(_harvest_alerts(crops, today))

    if len(alerts) < MIN_ALERTS:
        alerts.extend(_filler_alerts(days, crops, crop_names, soil, len(alerts), today))

    alerts.sort(key=lambda a: PRIORITY_ORDER.get(a.priority, len(PRIORITY_ORDER)))
    logger.info("Generated %d smart alerts (%d before cap)", min(len(alerts), MAX_ALERTS), len(alerts))
    return alerts[:MAX_ALERTS]
