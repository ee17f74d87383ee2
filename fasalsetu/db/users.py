from typing import Any, Dict, Optional

from supabase import Client

from fasalsetu.db import to_iso, utcnow

SUPPORTED_LANGUAGES = ("en", "hi", "mr", "te", "ta", "kn", "mixed")

LOCATION_COLUMNS = "latitude, longitude, location_accuracy, city, state, country, location_updated_at"


def get_user(client: Client, user_id: str) -> Optional[Dict[str, Any]]:
    res = client.table("users").select("*").eq("id", user_id).limit(1).execute()
    rows = res.data or []
    return rows[0] if rows else None


def ensure_user(client: Client, user_id: str, phone: Optional[str] = None) -> Dict[str, Any]:
    """Create the profile row for a freshly verified phone login if missing."""
    existing = get_user(client, user_id)
    if existing:
        return existing
    payload = {"id": user_id, "phone": phone, "preferred_language": "en"}
    res = client.table("users").insert(payload).execute()
    rows = res.data or []
    return rows[0] if rows else payload


def update_profile(
    client: Client,
    user_id: str,
    name: Optional[str] = None,
    farm_size: Optional[float] = None,
    preferred_language: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    updates: Dict[str, Any] = {}
    if name is not None:
        updates["name"] = name
    if farm_size is not None:
        if farm_size < 0:
            raise ValueError("farm_size must be non-negative")
        updates["farm_size"] = farm_size
    if preferred_language is not None:
        if preferred_language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"unsupported language: {preferred_language}")
        updates["preferred_language"] = preferred_language
    if not updates:
        return get_user(client, user_id)
    res = client.table("users").update(updates).eq("id", user_id).execute()
    rows = res.data or []
    return rows[0] if rows else None


def save_location(client: Client, user_id: str, location: Dict[str, Any]) -> Dict[str, Any]:
    payload = {
        "latitude": location["latitude"],
        "longitude": location["longitude"],
        "location_accuracy": location.get("accuracy"),
        "city": location.get("city") or None,
        "state": location.get("state") or None,
        "country": location.get("country") or None,
        "location_updated_at": to_iso(utcnow()),
    }
    client.table("users").update(payload).eq("id", user_id).execute()
    return payload


def get_location(client: Client, user_id: str) -> Optional[Dict[str, Any]]:
    res = client.table("users").select(LOCATION_COLUMNS).eq("id", user_id).limit(1).execute()
    rows = res.data or []
    if not rows:
        return None
    row = rows[0]
    if row.get("latitude") is None or row.get("longitude") is None:
        return None
    return {
        "latitude": row["latitude"],
        "longitude": row["longitude"],
        "accuracy": row.get("location_accuracy"),
        "city": row.get("city"),
        "state": row.get("state"),
        "country": row.get("country"),
        "location_updated_at": row.get("location_updated_at"),
    }
