import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException
from supabase import Client

from fasalsetu import config
from fasalsetu.db import users

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
JWT_AUDIENCE = "authenticated"
COUNTRY_CODE = "+91"


@dataclass
class AuthUser:
    id: str
    phone: Optional[str]
    token: str


def format_phone(phone: str) -> str:
    """Normalise an Indian mobile number to E.164 (+91XXXXXXXXXX)."""
    digits = re.sub(r"[\s\-()]", "", phone or "")
    if digits.startswith("+91"):
        digits = digits[3:]
    elif digits.startswith("91") and len(digits) == 12:
        digits = digits[2:]
    elif digits.startswith("0") and len(digits) == 11:
        digits = digits[1:]
    if not re.fullmatch(r"\d{10}", digits):
        raise ValueError("phone must be a 10 digit mobile number")
    return f"{COUNTRY_CODE}{digits}"


def send_otp(client: Client, phone: str) -> str:
    formatted = format_phone(phone)
    client.auth.sign_in_with_otp({"phone": formatted, "options": {"channel": "sms"}})
    logger.info("OTP requested for %s******", formatted[:6])
    return formatted


def verify_otp(client: Client, phone: str, otp: str) -> Dict[str, Any]:
    formatted = format_phone(phone)
    otp = (otp or "").strip()
    if not re.fullmatch(r"\d{6}", otp):
        raise ValueError("otp must be 6 digits")
    res = client.auth.verify_otp({"phone": formatted, "token": otp, "type": "sms"})
    if not res.user or not res.session:
        raise PermissionError("invalid_otp")
    users.ensure_user(client, res.user.id, formatted)
    return {
        "access_token": res.session.access_token,
        "refresh_token": res.session.refresh_token,
        "expires_in": res.session.expires_in,
        "user": {"id": res.user.id, "phone": formatted},
    }


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    secret = config.get_supabase_jwt_secret()
    if not secret or not token:
        return None
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALG], audience=JWT_AUDIENCE)
    except jwt.PyJWTError as e:
        logger.info("Rejected access token: %s", e)
        return None


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return authorization.strip()


def current_user(authorization: Optional[str] = Header(None)) -> AuthUser:
    token = _bearer(authorization)
    data = decode_access_token(token) if token else None
    if not data or not data.get("sub"):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return AuthUser(id=data["sub"], phone=data.get("phone"), token=token)
