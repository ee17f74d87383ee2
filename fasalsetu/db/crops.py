from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Union

from supabase import Client

from fasalsetu.db import to_iso, utcnow

TABLE = "crop_cycles"

# Average sowing-to-harvest durations in days.
CROP_DURATIONS = {
    "Wheat": 120,
    "Rice": 120,
    "Maize": 90,
    "Mustard": 90,
    "Chickpea": 120,
    "Lentil": 110,
    "Cotton": 180,
    "Sugarcane": 365,
    "Tomato": 75,
    "Potato": 90,
    "Onion": 120,
}
DEFAULT_DURATION = 100

MANUAL_STATUSES = ("healthy", "attention", "critical")

UPDATABLE_FIELDS = (
    "crop_name",
    "sowing_date",
    "expected_harvest_date",
    "current_stage",
    "predicted_yield",
)


def _as_date(value: Union[str, date]) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def expected_harvest_date(crop_name: str, sowing_date: Union[str, date]) -> str:
    duration = CROP_DURATIONS.get(crop_name, DEFAULT_DURATION)
    return (_as_date(sowing_date) + timedelta(days=duration)).isoformat()


def add_crop_cycle(
    client: Client,
    user_id: str,
    crop_name: str,
    sowing_date: Union[str, date],
    current_stage: Optional[str] = None,
    expected_harvest: Optional[str] = None,
    predicted_yield: Optional[float] = None,
) -> Dict[str, Any]:
    crop_name = (crop_name or "").strip()
    if not crop_name:
        raise ValueError("crop_name is required")
    sowing = _as_date(sowing_date).isoformat()
    payload = {
        "user_id": user_id,
        "crop_name": crop_name,
        "sowing_date": sowing,
        "current_stage": current_stage or "growth",
        "expected_harvest_date": expected_harvest or expected_harvest_date(crop_name, sowing),
        "predicted_yield": predicted_yield,
        "is_active": True,
    }
    res = client.table(TABLE).insert(payload).execute()
    rows = res.data or []
    return rows[0] if rows else payload


def get_active_crops(client: Client, user_id: str) -> List[Dict[str, Any]]:
    res = (
        client.table(TABLE)
        .select("*")
        .eq("user_id", user_id)
        .eq("is_active", True)
        .order("crop_id", desc=True)
        .execute()
    )
    return res.data or []


def get_all_crops(client: Client, user_id: str) -> List[Dict[str, Any]]:
    res = client.table(TABLE).select("*").eq("user_id", user_id).order("crop_id", desc=True).execute()
    return res.data or []


def get_crop(client: Client, user_id: str, crop_id: int) -> Optional[Dict[str, Any]]:
    res = client.table(TABLE).select("*").eq("crop_id", crop_id).eq("user_id", user_id).limit(1).execute()
    rows = res.data or []
    return rows[0] if rows else None


def get_latest_active_crop(
    client: Client, user_id: str, crop_name: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """Most recently sown active crop, optionally restricted to one crop name."""
    query = client.table(TABLE).select("*").eq("user_id", user_id).eq("is_active", True)
    if crop_name:
        query = query.eq("crop_name", crop_name)
    res = query.order("sowing_date", desc=True).limit(1).execute()
    rows = res.data or []
    return rows[0] if rows else None


def update_crop_cycle(client: Client, user_id: str, crop_id: int, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    clean = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
    if not clean:
        return get_crop(client, user_id, crop_id)
    if "sowing_date" in clean:
        clean["sowing_date"] = _as_date(clean["sowing_date"]).isoformat()
    res = client.table(TABLE).update(clean).eq("crop_id", crop_id).eq("user_id", user_id).execute()
    rows = res.data or []
    return rows[0] if rows else None


def mark_harvested(client: Client, user_id: str, crop_id: int) -> bool:
    res = client.table(TABLE).update({"is_active": False}).eq("crop_id", crop_id).eq("user_id", user_id).execute()
    return bool(res.data)


def delete_crop_cycle(client: Client, user_id: str, crop_id: int) -> bool:
    res = client.table(TABLE).delete().eq("crop_id", crop_id).eq("user_id", user_id).execute()
    return bool(res.data)


def set_manual_status(client: Client, user_id: str, crop_id: int, status: str) -> bool:
    if status not in MANUAL_STATUSES:
        raise ValueError(f"invalid status: {status}")
    res = (
        client.table(TABLE)
        .update({"manual_status": status, "manual_status_updated_at": to_iso(utcnow())})
        .eq("crop_id", crop_id)
        .eq("user_id", user_id)
        .execute()
    )
    return bool(res.data)
