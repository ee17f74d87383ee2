"""Thin wrapper over google-generativeai shared by the advisory and soil code."""
import json
import logging
from typing import Any, Dict, List, Optional, Union

import google.generativeai as genai

from fasalsetu import config

logger = logging.getLogger(__name__)

Part = Union[str, Dict[str, Any]]


def _is_quota_error(exc: Exception) -> bool:
    msg = str(exc).lower()
    return "429" in msg or "quota" in msg or "resource_exhausted" in msg


def generate_text(
    parts: Union[str, List[Part]],
    temperature: float = 0.4,
    top_p: float = 0.8,
    top_k: int = 20,
    max_output_tokens: int = 2048,
    timeout: float = 25.0,
    model_name: Optional[str] = None,
) -> str:
    """Run one generate_content call and return the response text.

    Keys from GEMINI_API_KEYS are tried in order; a quota error moves on to
    the next key, any other error is raised. Raises ValueError when no key
    is configured or the model returns nothing.
    """
    api_keys = config.get_gemini_api_keys()
    if not api_keys:
        raise ValueError("GEMINI_API_KEY not configured")

    generation_config = {
        "temperature": temperature,
        "top_p": top_p,
        "top_k": top_k,
        "max_output_tokens": max_output_tokens,
        "candidate_count": 1,
    }
    last_error: Optional[Exception] = None
    for idx, api_key in enumerate(api_keys):
        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(model_name or config.get_gemini_model())
        try:
            resp = model.generate_content(
                parts,
                generation_config=generation_config,
                request_options={"timeout": timeout},
            )
        except Exception as e:
            last_error = e
            if _is_quota_error(e) and idx + 1 < len(api_keys):
                logger.warning("Gemini key #%d hit quota, trying next key", idx + 1)
                continue
            raise
        text = (getattr(resp, "text", None) or "").strip()
        if not text:
            raise ValueError("Empty response from model")
        return text

    if last_error:
        raise last_error
    raise ValueError("Gemini call failed with no available keys")


def image_part(image_bytes: bytes, mime_type: str = "image/jpeg") -> Dict[str, Any]:
    return {"mime_type": mime_type, "data": image_bytes}


def strip_code_fences(content: str) -> str:
    txt = (content or "").strip()
    if txt.startswith("```json"):
        txt = txt[7:]
    elif txt.startswith("```"):
        txt = txt[3:]
    if txt.endswith("```"):
        txt = txt[:-3]
    return txt.strip()


def extract_first_json_object(content: str) -> Dict[str, Any]:
    """Extract and parse the first JSON object from a text blob.

    Handles replies that wrap the object in Markdown fences or follow it
    with extra prose.
    """
    txt = strip_code_fences(content)
    try:
        return json.loads(txt)
    except ValueError:
        pass

    start = txt.find("{")
    if start == -1:
        raise ValueError("No JSON object start found")
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(txt)):
        ch = txt[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return json.loads(txt[start:i + 1])
    raise ValueError("No complete JSON object found")
