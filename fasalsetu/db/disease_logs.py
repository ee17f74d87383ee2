from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from supabase import Client

from fasalsetu.db import to_iso, utcnow

TABLE = "disease_logs"

SEVERITIES = ("mild", "moderate", "severe", "unknown")


def save_disease_log(
    client: Client,
    user_id: str,
    disease_name: str,
    severity: str,
    image_url: Optional[str] = None,
    confidence: Optional[float] = None,
    remedy: Optional[str] = None,
    notes: Optional[str] = None,
    crop_cycle_id: Optional[int] = None,
) -> Dict[str, Any]:
    if severity not in SEVERITIES:
        severity = "unknown"
    payload = {
        "user_id": user_id,
        "crop_cycle_id": crop_cycle_id,
        "detection_date": to_iso(utcnow()),
        "disease_name": disease_name,
        "severity": severity,
        "image_s3_url": image_url,
        "confidence_score": confidence,
        "remedy_suggested": remedy,
        "notes": notes,
    }
    res = client.table(TABLE).insert(payload).execute()
    rows = res.data or []
    return rows[0] if rows else payload


def list_disease_logs(
    client: Client, user_id: str, crop_cycle_id: Optional[int] = None, limit: int = 50
) -> List[Dict[str, Any]]:
    query = client.table(TABLE).select("*").eq("user_id", user_id)
    if crop_cycle_id is not None:
        query = query.eq("crop_cycle_id", crop_cycle_id)
    res = query.order("detection_date", desc=True).limit(limit).execute()
    return res.data or []


def recent_disease_logs(client: Client, user_id: str, days: int = 7) -> List[Dict[str, Any]]:
    since = utcnow() - timedelta(days=days)
    res = (
        client.table(TABLE)
        .select("disease_name, severity, crop_cycle_id, detection_date")
        .eq("user_id", user_id)
        .gte("detection_date", to_iso(since))
        .order("detection_date", desc=True)
        .execute()
    )
    return res.data or []


def logs_for_crop_since(client: Client, user_id: str, crop_cycle_id: int, since: datetime) -> List[Dict[str, Any]]:
    res = (
        client.table(TABLE)
        .select("severity, detection_date, disease_name")
        .eq("user_id", user_id)
        .eq("crop_cycle_id", crop_cycle_id)
        .gte("detection_date", to_iso(since))
        .order("detection_date", desc=True)
        .execute()
    )
    return res.data or []
