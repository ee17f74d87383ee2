"""Soil properties for a location.

Readings come from the OpenEPI SoilGrids proxy. When that fails, Gemini is
asked for typical values of the region, and when that fails too, fixed
loamy-soil defaults are used. Results are stored in ``farm_soil_data`` and
reused for 30 days.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx
from supabase import Client

from fasalsetu.db import parse_timestamp, soil as soil_db, utcnow
from fasalsetu.services import gemini

logger = logging.getLogger(__name__)

SOIL_PROPERTY_API = "https://api.openepi.io/soil/property"
SOIL_TYPE_API = "https://api.openepi.io/soil/type"
SOIL_PROPERTIES = ("phh2o", "nitrogen", "soc", "cec", "clay", "sand", "silt", "bdod")
# SoilGrids stores these as integers scaled by `d_factor`; nitrogen (cg/kg)
# and bdod (cg/cm3) are kept in their mapped units.
SCALED_PROPERTIES = ("phh2o", "soc", "cec", "clay", "sand", "silt")
DEFAULT_DEPTH = "0-5cm"
REFRESH_AFTER = timedelta(days=30)

GEMINI_DEFAULTS = {
    "ph": 7.0,
    "nitrogen": 150,
    "organic_carbon": 10,
    "cec": 15,
    "clay": 30,
    "sand": 40,
    "silt": 30,
    "bulk_density": 140,
    "soil_type": "Loamy Soil",
}


def _layer_means(payload: Dict[str, Any]) -> Dict[str, float]:
    means: Dict[str, float] = {}
    for layer in (payload.get("properties") or {}).get("layers") or []:
        code = layer.get("code")
        depths = layer.get("depths") or []
        if not code or not depths:
            continue
        mean = (depths[0].get("values") or {}).get("mean")
        if mean is None:
            continue
        if code in SCALED_PROPERTIES:
            d_factor = (layer.get("unit_measure") or {}).get("d_factor") or 10
            mean = mean / float(d_factor)
        means[code] = float(mean)
    return means


def fetch_soil_properties(lat: float, lon: float, depth: str = DEFAULT_DEPTH) -> Dict[str, float]:
    params = {
        "lat": lat,
        "lon": lon,
        "depths": depth,
        "properties": ",".join(SOIL_PROPERTIES),
        "values": "mean",
    }
    resp = httpx.get(SOIL_PROPERTY_API, params=params, timeout=20)
    resp.raise_for_status()
    means = _layer_means(resp.json())
    if not means:
        raise ValueError("No soil property data in response")
    return {
        "ph": means.get("phh2o") or 7.0,
        "nitrogen": means.get("nitrogen") or 0,
        "organic_carbon": means.get("soc") or 0,
        "cec": means.get("cec") or 0,
        "clay": means.get("clay") or 0,
        "sand": means.get("sand") or 0,
        "silt": means.get("silt") or 0,
        "bulk_density": means.get("bdod") or 0,
    }


def fetch_soil_type(lat: float, lon: float) -> Optional[str]:
    try:
        resp = httpx.get(SOIL_TYPE_API, params={"lat": lat, "lon": lon}, timeout=20)
        resp.raise_for_status()
        return (resp.json().get("properties") or {}).get("most_probable_soil_type")
    except Exception as e:
        logger.warning("Soil type lookup failed: %s", e)
        return None


def get_soil_data(lat: float, lon: float, depth: str = DEFAULT_DEPTH) -> Dict[str, Any]:
    """Properties plus classification from OpenEPI. Raises ValueError on failure."""
    try:
        props = fetch_soil_properties(lat, lon, depth)
    except (httpx.HTTPError, ValueError) as e:
        raise ValueError(f"Soil property API failed: {e}")
    props.update({
        "soil_type": fetch_soil_type(lat, lon) or "Unknown",
        "depth": depth,
        "latitude": lat,
        "longitude": lon,
        "data_source": "SoilGrids API",
    })
    return props


def _location_label(lat, lon, city=None, state=None, country=None) -> str:
    if city and state:
        return f"{city}, {state}, {country or 'India'}"
    return f"coordinates {lat}, {lon}"


def estimate_soil_with_gemini(
    lat: float,
    lon: float,
    city: Optional[str] = None,
    state: Optional[str] = None,
    country: Optional[str] = None,
) -> Dict[str, Any]:
    """Typical regional soil values from Gemini, falling back to fixed defaults."""
    location = _location_label(lat, lon, city, state, country)
    prompt = (
        f"You are a soil science expert. Based on the location {location}, provide typical soil "
        "properties for agricultural land in this region.\n\n"
        "Respond ONLY with a valid JSON object (no markdown, no explanation) with these exact fields:\n"
        "{\n"
        '  "pH": <number between 4.0-9.0>,\n'
        '  "nitrogen": <number in cg/kg, typical range 50-300>,\n'
        '  "organicCarbon": <number in g/kg, typical range 5-30>,\n'
        '  "cec": <number in cmol(+)/kg, typical range 5-40>,\n'
        '  "clay": <percentage 0-100>,\n'
        '  "sand": <percentage 0-100>,\n'
        '  "silt": <percentage 0-100>,\n'
        '  "bulkDensity": <number in cg/cm3, typical range 100-180>,\n'
        '  "soilType": "<descriptive name like \'Loamy Soil\', \'Clay Loam\', \'Sandy Loam\'>"\n'
        "}\n\n"
        "Note: clay + sand + silt should equal 100.\n"
        "Base your estimates on typical agricultural soils in this geographic region."
    )
    est: Dict[str, Any] = {}
    try:
        est = gemini.extract_first_json_object(gemini.generate_text(prompt, max_output_tokens=512))
        data_source = "Gemini AI"
    except Exception as e:
        logger.warning("Gemini soil estimate failed for %s, using defaults: %s", location, e)
        data_source = "Default estimate"

    d = GEMINI_DEFAULTS
    return {
        "ph": est.get("pH") or d["ph"],
        "nitrogen": est.get("nitrogen") or d["nitrogen"],
        "organic_carbon": est.get("organicCarbon") or d["organic_carbon"],
        "cec": est.get("cec") or d["cec"],
        "clay": est.get("clay") or d["clay"],
        "sand": est.get("sand") or d["sand"],
        "silt": est.get("silt") or d["silt"],
        "bulk_density": est.get("bulkDensity") or d["bulk_density"],
        "soil_type": est.get("soilType") or d["soil_type"],
        "depth": DEFAULT_DEPTH,
        "latitude": lat,
        "longitude": lon,
        "data_source": data_source,
    }


def interpret_ph(ph: float) -> str:
    if ph < 5.5:
        return "Acidic - Consider lime application"
    if ph < 6.5:
        return "Slightly acidic - Good for most crops"
    if ph < 7.5:
        return "Neutral - Optimal for most crops"
    if ph < 8.5:
        return "Slightly alkaline - May need gypsum"
    return "Alkaline - Nutrient availability limited"


def interpret_nitrogen(nitrogen: float) -> str:
    if nitrogen < 100:
        return "Low - Nitrogen fertilizer recommended"
    if nitrogen < 200:
        return "Moderate - Monitor crop needs"
    return "High - Reduce nitrogen inputs"


def interpret_organic_carbon(soc: float) -> str:
    if soc < 10:
        return "Very low - Add organic matter"
    if soc < 20:
        return "Low - Increase organic inputs"
    if soc < 30:
        return "Moderate - Maintain current practices"
    return "High - Excellent soil health"


def interpret_texture(clay: float, sand: float, silt: float) -> str:
    if clay > 40:
        return "Clay - High water retention, slow drainage"
    if sand > 60:
        return "Sandy - Low water retention, fast drainage"
    if silt > 40:
        return "Silty - Good water retention and aeration"
    return "Loamy - Ideal balance for most crops"


def interpret_bulk_density(bdod: float) -> str:
    # cg/cm3 -> g/cm3
    density = bdod * 0.01
    if density > 1.6:
        return "Compacted - Consider tillage"
    if density > 1.4:
        return "Moderate - Monitor root growth"
    return "Good - Adequate for root development"


def interpret_water_retention(clay: float, sand: float) -> str:
    if clay > 40:
        return "High - Risk of waterlogging"
    if sand > 60:
        return "Low - Frequent irrigation needed"
    return "Moderate - Balanced water management"


def interpret_soil(soil: Dict[str, Any]) -> Dict[str, str]:
    return {
        "ph_interpretation": interpret_ph(soil["ph"]),
        "nitrogen_level": interpret_nitrogen(soil["nitrogen"]),
        "organic_matter_level": interpret_organic_carbon(soil["organic_carbon"]),
        "texture_type": interpret_texture(soil["clay"], soil["sand"], soil["silt"]),
        "compaction_level": interpret_bulk_density(soil["bulk_density"]),
        "water_retention": interpret_water_retention(soil["clay"], soil["sand"]),
    }


def format_soil_report(soil: Dict[str, Any]) -> str:
    i = interpret_soil(soil)
    return "\n".join([
        f"Soil Type: {soil.get('soil_type') or 'Unknown'}",
        f"pH: {soil['ph']:.1f} ({i['ph_interpretation']})",
        f"Nitrogen: {soil['nitrogen']:.0f} cg/kg ({i['nitrogen_level']})",
        f"Organic Carbon: {soil['organic_carbon']:.1f} g/kg ({i['organic_matter_level']})",
        f"Texture: {i['texture_type']}",
        f"    - Clay: {soil['clay']:.1f}%",
        f"    - Sand: {soil['sand']:.1f}%",
        f"    - Silt: {soil['silt']:.1f}%",
        f"Water Retention: {i['water_retention']}",
        f"Compaction: {i['compaction_level']}",
    ])


def should_refresh(row: Optional[Dict[str, Any]], now=None) -> bool:
    if not row:
        return True
    recorded = parse_timestamp(row.get("recorded_at"))
    if recorded is None:
        return True
    return (now or utcnow()) - recorded > REFRESH_AFTER


def get_or_refresh_soil(
    client: Client,
    user_id: str,
    lat: Optional[float],
    lon: Optional[float],
    city: Optional[str] = None,
    state: Optional[str] = None,
    country: Optional[str] = None,
    force: bool = False,
) -> Optional[Dict[str, Any]]:
    """Return the user's soil reading, fetching and storing a new one when stale.

    Returns None when nothing is stored and no coordinates are known.
    """
    latest = soil_db.latest_soil_sample(client, user_id)
    if not force and not should_refresh(latest):
        return soil_db.row_to_soil(latest)
    if lat is None or lon is None:
        if latest:
            logger.info("Soil sample for %s is stale but no coordinates are known", user_id)
            return soil_db.row_to_soil(latest)
        return None

    try:
        soil = get_soil_data(lat, lon)
    except ValueError as e:
        logger.warning("OpenEPI soil lookup failed, asking Gemini: %s", e)
        soil = estimate_soil_with_gemini(lat, lon, city, state, country)

    row = soil_db.save_soil_sample(client, user_id, soil)
    stored = soil_db.row_to_soil(row)
    logger.info("Stored soil sample for %s from %s", user_id, soil["data_source"])
    return stored
