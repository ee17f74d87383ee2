"""Supabase access layer.

Each submodule wraps one table with plain functions that take a Supabase
client and the authenticated user's id. Queries always filter on
``user_id`` in addition to the row-level security policies in the database.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from supabase import Client, create_client

from fasalsetu import config

logger = logging.getLogger(__name__)


def get_client(access_token: Optional[str] = None) -> Client:
    """Build a client for one request.

    With a service key configured the client bypasses row-level security and
    the per-user filters in this package do the scoping. Otherwise the anon
    key is used and the caller's JWT is forwarded so Postgres evaluates the
    policies as that user.
    """
    url = config.get_supabase_url()
    service_key = config.get_supabase_service_key()
    anon_key = config.get_supabase_anon_key()
    if not url or not (service_key or anon_key):
        raise ValueError("Supabase config missing: set SUPABASE_URL and SUPABASE_ANON_KEY")

    if service_key:
        return create_client(url, service_key)

    client = create_client(url, anon_key)
    if access_token:
        client.postgrest.auth(access_token)
    return client


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a Postgres timestamp string into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip().replace("Z", "+00:00")
    if " " in text and "T" not in text:
        text = text.replace(" ", "T", 1)
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unparseable timestamp %r", value)
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
