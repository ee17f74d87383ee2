from typing import Any, Dict, List, Optional

from supabase import Client

from fasalsetu.db import to_iso, utcnow

TABLE = "farm_soil_data"


def save_soil_sample(client: Client, user_id: str, soil: Dict[str, Any]) -> Dict[str, Any]:
    """Persist a soil reading in the shape produced by services.soil."""
    payload = {
        "user_id": user_id,
        "latitude": soil.get("latitude"),
        "longitude": soil.get("longitude"),
        "ph_level": soil.get("ph"),
        "total_nitrogen": soil.get("nitrogen"),
        "organic_carbon": soil.get("organic_carbon"),
        "cec": soil.get("cec"),
        "clay_pct": soil.get("clay"),
        "sand_pct": soil.get("sand"),
        "silt_pct": soil.get("silt"),
        "bulk_density": soil.get("bulk_density"),
        "soil_type_name": soil.get("soil_type"),
        "sample_depth": soil.get("depth") or "0-5cm",
        "data_source": soil.get("data_source") or "SoilGrids API",
        "recorded_at": to_iso(utcnow()),
    }
    res = client.table(TABLE).insert(payload).execute()
    rows = res.data or []
    return rows[0] if rows else payload


def latest_soil_sample(client: Client, user_id: str) -> Optional[Dict[str, Any]]:
    res = (
        client.table(TABLE)
        .select("*")
        .eq("user_id", user_id)
        .order("recorded_at", desc=True)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return rows[0] if rows else None


def list_soil_samples(client: Client, user_id: str) -> List[Dict[str, Any]]:
    res = client.table(TABLE).select("*").eq("user_id", user_id).order("recorded_at", desc=True).execute()
    return res.data or []


def row_to_soil(row: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a stored row back into the service-level soil dict."""
    return {
        "ph": row.get("ph_level") or 7.0,
        "nitrogen": row.get("total_nitrogen") or 0,
        "organic_carbon": row.get("organic_carbon") or 0,
        "cec": row.get("cec") or 0,
        "clay": row.get("clay_pct") or 0,
        "sand": row.get("sand_pct") or 0,
        "silt": row.get("silt_pct") or 0,
        "bulk_density": row.get("bulk_density") or 0,
        "soil_type": row.get("soil_type_name") or "Unknown",
        "depth": row.get("sample_depth") or "0-5cm",
        "latitude": row.get("latitude"),
        "longitude": row.get("longitude"),
        "data_source": row.get("data_source"),
        "recorded_at": row.get("recorded_at"),
    }
