import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from supabase import Client

from fasalsetu.db import disease_logs, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

MANUAL_STATUS_TTL = timedelta(days=7)
LOG_WINDOW = timedelta(days=30)


def classify_status(
    logs: List[Dict[str, Any]],
    manual_status: Optional[str] = None,
    manual_updated_at=None,
    now: Optional[datetime] = None,
) -> str:
    """healthy / attention / critical from a farmer override or recent disease logs.

    A manual status younger than seven days wins. Otherwise two or more logs,
    or any severe one, is critical; a single mild or moderate log needs
    attention.
    """
    now = now or utcnow()
    if manual_status:
        updated = parse_timestamp(manual_updated_at)
        if updated is not None and updated > now - MANUAL_STATUS_TTL:
            return manual_status

    if not logs:
        return "healthy"
    if len(logs) >= 2:
        return "critical"
    severities = [l.get("severity") for l in logs]
    if "severe" in severities:
        return "critical"
    if "moderate" in severities or "mild" in severities:
        return "attention"
    return "healthy"


def crop_status(client: Client, user_id: str, crop: Dict[str, Any], now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    try:
        logs = disease_logs.logs_for_crop_since(client, user_id, crop["crop_id"], now - LOG_WINDOW)
    except Exception:
        logger.exception("Disease log lookup failed for crop %s, reporting healthy", crop.get("crop_id"))
        return "healthy"
    status = classify_status(logs, crop.get("manual_status"), crop.get("manual_status_updated_at"), now)
    logger.debug("Crop %s (%s): %d logs -> %s", crop.get("crop_id"), crop.get("crop_name"), len(logs), status)
    return status
