from datetime import timedelta
from typing import Any, Dict, List, Optional

from supabase import Client

from fasalsetu.db import to_iso, utcnow

TABLE = "crop_suggestions"

CATEGORIES = ("seasonal", "soil", "market", "disease", "fertilizer", "irrigation", "general")
MAX_ACTIVE = 10


def get_active_suggestions(client: Client, user_id: str) -> List[Dict[str, Any]]:
    """Active, unexpired suggestions, newest first."""
    now = to_iso(utcnow())
    res = (
        client.table(TABLE)
        .select("*")
        .eq("user_id", user_id)
        .eq("is_active", True)
        .or_(f"expires_at.is.null,expires_at.gt.{now}")
        .order("generated_at", desc=True)
        .limit(MAX_ACTIVE)
        .execute()
    )
    return res.data or []


def create_suggestion(
    client: Client,
    user_id: str,
    title: str,
    description: str,
    category: str,
    confidence: Optional[float] = None,
    crop_context: Optional[Dict[str, Any]] = None,
    ai_model: str = "gemini-2.0-flash-exp",
    ttl_days: Optional[int] = None,
) -> Dict[str, Any]:
    now = utcnow()
    payload = {
        "user_id": user_id,
        "title": title,
        "description": description,
        "category": category if category in CATEGORIES else "general",
        "crop_context": crop_context,
        "confidence_score": confidence,
        "ai_model": ai_model,
        "is_active": True,
        "generated_at": to_iso(now),
        "expires_at": to_iso(now + timedelta(days=ttl_days)) if ttl_days else None,
    }
    res = client.table(TABLE).insert(payload).execute()
    rows = res.data or []
    return rows[0] if rows else payload


def mark_suggestion_helpful(client: Client, user_id: str, suggestion_id: int, is_helpful: bool) -> bool:
    res = (
        client.table(TABLE)
        .update({"is_helpful": is_helpful, "feedback_at": to_iso(utcnow())})
        .eq("suggestion_id", suggestion_id)
        .eq("user_id", user_id)
        .execute()
    )
    return bool(res.data)


def deactivate_suggestion(client: Client, user_id: str, suggestion_id: int) -> bool:
    res = (
        client.table(TABLE)
        .update({"is_active": False})
        .eq("suggestion_id", suggestion_id)
        .eq("user_id", user_id)
        .execute()
    )
    return bool(res.data)


def delete_expired_suggestions(client: Client, user_id: str) -> int:
    res = (
        client.table(TABLE)
        .delete()
        .eq("user_id", user_id)
        .lt("expires_at", to_iso(utcnow()))
        .execute()
    )
    return len(res.data or [])
