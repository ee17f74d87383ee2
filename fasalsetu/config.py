import os
from typing import List, Optional


def get_supabase_url() -> Optional[str]:
    return os.getenv("SUPABASE_URL")


def get_supabase_anon_key() -> Optional[str]:
    return os.getenv("SUPABASE_ANON_KEY")


def get_supabase_service_key() -> Optional[str]:
    return os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY")


def get_supabase_jwt_secret() -> Optional[str]:
    return os.getenv("SUPABASE_JWT_SECRET")


def get_gemini_api_keys() -> List[str]:
    """Return configured Gemini keys in rotation order.

    `GEMINI_API_KEYS` takes a comma separated list; `GEMINI_API_KEY` is
    appended when it is not already present.
    """
    keys = []
    raw = os.getenv("GEMINI_API_KEYS", "")
    for k in raw.split(","):
        k = k.strip()
        if k and k not in keys:
            keys.append(k)
    single = (os.getenv("GEMINI_API_KEY") or "").strip()
    if single and single not in keys:
        keys.append(single)
    return keys


def get_gemini_model() -> str:
    return os.getenv("GEMINI_MODEL", "gemini-2.0-flash-exp")


def get_weather_api_key() -> str:
    return os.getenv("WEATHER_API_KEY", "")


def get_vision_api_key() -> str:
    return os.getenv("GOOGLE_CLOUD_VISION_API_KEY", "")


def get_tts_api_key() -> str:
    return os.getenv("GOOGLE_TTS_API_KEY") or os.getenv("GOOGLE_AI_API_KEY", "")


def tts_enabled() -> bool:
    return os.getenv("ENABLE_GOOGLE_TTS", "true").lower() in ("1", "true", "yes")


def get_storage_bucket() -> str:
    return os.getenv("STORAGE_BUCKET", "crop-images")


def get_suggestion_ttl_days() -> int:
    try:
        return int(os.getenv("SUGGESTION_TTL_DAYS", "7"))
    except ValueError:
        return 7


def get_cors_origins() -> List[str]:
    raw = os.getenv("CORS_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
