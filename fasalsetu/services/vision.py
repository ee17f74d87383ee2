"""
Disease detection from crop photos.
Google Cloud Vision labels and web entities are matched against a small
knowledge base of common Indian crop diseases, pests and deficiencies.
"""
import base64
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from supabase import Client

from fasalsetu import config
from fasalsetu.db import disease_logs, storage
from fasalsetu.services.images import shrink_image

logger = logging.getLogger(__name__)

VISION_API_URL = "https://vision.googleapis.com/v1/images:annotate"

DISEASE_REMEDIES: Dict[str, Dict[str, str]] = {
    # Fungal
    "leaf blight": {
        "remedy": "Apply Mancozeb 2.5g per liter of water. Spray in the evening. Repeat after 10 days. Remove infected leaves.",
        "severity": "moderate",
        "affected_part": "leaves",
    },
    "powdery mildew": {
        "remedy": "Spray sulfur-based fungicide (3g/liter). Ensure good air circulation. Apply neem oil as preventive measure.",
        "severity": "mild",
        "affected_part": "leaves",
    },
    "rust": {
        "remedy": "Use copper-based fungicide (2g/liter). Practice crop rotation. Remove infected plant debris.",
        "severity": "moderate",
        "affected_part": "leaves and stems",
    },
    "anthracnose": {
        "remedy": "Apply Carbendazim 1g/liter. Improve drainage. Avoid overhead irrigation.",
        "severity": "moderate",
        "affected_part": "fruits and leaves",
    },
    "downy mildew": {
        "remedy": "Spray Metalaxyl + Mancozeb (2g/liter). Reduce humidity. Increase plant spacing.",
        "severity": "moderate",
        "affected_part": "leaves",
    },
    "fusarium wilt": {
        "remedy": "No chemical cure. Remove infected plants. Use resistant varieties. Improve soil drainage.",
        "severity": "severe",
        "affected_part": "roots and stems",
    },
    # Bacterial
    "bacterial spot": {
        "remedy": "Apply copper hydroxide (2g/liter). Remove infected leaves. Avoid water splash on leaves.",
        "severity": "moderate",
        "affected_part": "leaves and fruits",
    },
    "bacterial blight": {
        "remedy": "Spray Streptocycline (1g/10 liters). Remove infected parts. Use disease-free seeds.",
        "severity": "severe",
        "affected_part": "leaves and stems",
    },
    # Viral
    "mosaic virus": {
        "remedy": "No cure available. Remove infected plants immediately. Control aphid vectors. Use virus-free seeds.",
        "severity": "severe",
        "affected_part": "leaves",
    },
    "leaf curl": {
        "remedy": "Control whitefly vectors with Imidacloprid (0.5ml/liter). Remove infected leaves. Use resistant varieties.",
        "severity": "severe",
        "affected_part": "leaves",
    },
    # Pests
    "aphid": {
        "remedy": "Spray Imidacloprid (0.5ml/liter) or neem oil (5ml/liter). Introduce ladybugs as natural predators.",
        "severity": "mild",
        "affected_part": "leaves and stems",
    },
    "whitefly": {
        "remedy": "Use yellow sticky traps. Spray Thiamethoxam (0.5g/liter). Apply neem oil (5ml/liter).",
        "severity": "moderate",
        "affected_part": "leaves",
    },
    "caterpillar": {
        "remedy": "Apply Bacillus thuringiensis (1g/liter). Hand-pick larvae. Use pheromone traps.",
        "severity": "moderate",
        "affected_part": "leaves and fruits",
    },
    "thrips": {
        "remedy": "Spray Fipronil (1ml/liter). Use blue sticky traps. Maintain field hygiene.",
        "severity": "mild",
        "affected_part": "leaves and flowers",
    },
    "mite": {
        "remedy": "Apply Propargite (2ml/liter). Increase humidity. Use predatory mites.",
        "severity": "mild",
        "affected_part": "leaves",
    },
    # Nutrient deficiencies
    "nitrogen deficiency": {
        "remedy": "Apply urea (10kg/acre) or organic compost. Foliar spray of urea solution (2%).",
        "severity": "mild",
        "affected_part": "leaves",
    },
    "iron deficiency": {
        "remedy": "Apply ferrous sulfate (5g/liter) as foliar spray. Reduce soil pH if alkaline.",
        "severity": "mild",
        "affected_part": "young leaves",
    },
    "magnesium deficiency": {
        "remedy": "Apply Epsom salt (10g/liter) as foliar spray. Add dolomite lime to soil.",
        "severity": "mild",
        "affected_part": "older leaves",
    },
}

DISEASE_KEYWORDS = (
    "blight", "mildew", "rust", "spot", "rot", "wilt", "disease", "infection",
    "fungus", "mold", "anthracnose", "mosaic", "curl", "bacterial", "viral",
    "aphid", "whitefly", "caterpillar", "pest", "insect", "thrips", "mite",
    "deficiency", "chlorosis", "necrosis", "lesion", "canker",
)
STRESS_KEYWORDS = ("yellow", "brown", "dry", "wilting", "damage")

UNKNOWN_REMEDY = (
    "Unable to identify specific disease. Please consult a local agricultural expert "
    "or upload a clearer image showing the affected area."
)
STRESS_LABEL = "possible nutrient deficiency or stress"


def _generic_remedy(disease: str) -> str:
    return (
        f"Possible issue detected: {disease}. Recommended actions: 1) Remove affected parts, "
        "2) Improve air circulation, 3) Avoid overhead watering, 4) Apply broad-spectrum "
        "fungicide if fungal, 5) Consult local agricultural extension officer."
    )


def _part_from_text(text: str) -> Optional[str]:
    if "leaf" in text or "leaves" in text:
        return "leaves"
    if "fruit" in text:
        return "fruits"
    if "stem" in text:
        return "stems"
    if "root" in text:
        return "roots"
    return None


def detect_disease_from_labels(
    labels: List[Dict[str, Any]], web_entities: List[Dict[str, Any]]
) -> Dict[str, Any]:
    """Turn Vision labels into a diagnosis.

    The highest-scoring term containing a disease keyword wins. Known
    diseases take their remedy, severity and affected part from
    DISEASE_REMEDIES; anything else gets a generic remedy at moderate
    severity.
    """
    terms = [((l.get("description") or "").lower(), l.get("score") or 0.0) for l in labels]
    terms += [((e.get("description") or "").lower(), e.get("score") or 0.0) for e in web_entities]

    detected: Optional[str] = None
    best = 0.0
    affected_part = "leaves"
    for text, score in terms:
        if any(k in text for k in DISEASE_KEYWORDS) and score > best:
            best = score
            detected = text
        affected_part = _part_from_text(text) or affected_part

    if not detected:
        stress = [(t, s) for t, s in terms if any(k in t for k in STRESS_KEYWORDS)]
        if stress:
            detected = STRESS_LABEL
            best = stress[0][1]

    remedy = UNKNOWN_REMEDY
    severity = "unknown"
    if detected:
        for key, info in DISEASE_REMEDIES.items():
            if key in detected:
                remedy = info["remedy"]
                severity = info["severity"]
                affected_part = info["affected_part"]
                detected = key
                break
        else:
            remedy = _generic_remedy(detected)
            severity = "moderate"

    return {
        "disease_name": detected or "Unknown",
        "confidence": best,
        "severity": severity,
        "remedy_suggested": remedy,
        "affected_part": affected_part,
        "raw_labels": [
            {"description": l.get("description") or "", "score": l.get("score") or 0.0} for l in labels[:10]
        ],
        "raw_web_entities": [
            {"description": e.get("description") or "", "score": e.get("score") or 0.0} for e in web_entities[:10]
        ],
        "image_url": "",
    }


def analyze_image(image_bytes: bytes) -> Dict[str, Any]:
    """Call Cloud Vision and run the label matcher. Raises ValueError on API failure."""
    api_key = config.get_vision_api_key()
    if not api_key:
        raise ValueError("GOOGLE_CLOUD_VISION_API_KEY not configured")

    body = {
        "requests": [{
            "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
            "features": [
                {"type": "LABEL_DETECTION", "maxResults": 20},
                {"type": "WEB_DETECTION", "maxResults": 20},
                {"type": "IMAGE_PROPERTIES"},
            ],
        }]
    }
    try:
        resp = httpx.post(VISION_API_URL, params={"key": api_key}, json=body, timeout=30)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPError as e:
        raise ValueError(f"Vision API failed: {e}")

    result = (data.get("responses") or [{}])[0]
    if result.get("error"):
        raise ValueError(f"Vision API error: {result['error'].get('message', result['error'])}")

    labels = result.get("labelAnnotations") or []
    web_entities = (result.get("webDetection") or {}).get("webEntities") or []
    logger.info("Vision labels: %s", [l.get("description") for l in labels[:5]])
    return detect_disease_from_labels(labels, web_entities)


def detect_disease_from_image(
    client: Client, user_id: str, image_bytes: bytes, crop_cycle_id: Optional[int] = None
) -> Dict[str, Any]:
    """Upload, analyse and log one photo. Returns the detection with its image URL."""
    image_bytes = shrink_image(image_bytes)
    image_url = storage.upload_image(client, user_id, image_bytes, folder="disease-images")
    if not image_url:
        raise ValueError("Failed to upload image")

    detection = analyze_image(image_bytes)
    detection["image_url"] = image_url
    top = ", ".join(l["description"] for l in detection["raw_labels"][:3])
    disease_logs.save_disease_log(
        client,
        user_id,
        disease_name=detection["disease_name"],
        severity=detection["severity"],
        image_url=image_url,
        confidence=detection["confidence"],
        remedy=detection["remedy_suggested"],
        notes=f"Detected via Google Cloud Vision API. Affected: {detection['affected_part']}. Raw labels: {top}",
        crop_cycle_id=crop_cycle_id,
    )
    logger.info("Disease detection for %s: %s (%.0f%%)", user_id, detection["disease_name"], detection["confidence"] * 100)
    return detection


_BOLD = re.compile(r"\*\*(.*?)\*\*")
_PAREN = re.compile(r"\(.*?\)")
_REMEDY = re.compile(r"🧪.*?Immediate Action([\s\S]*?)(?=🚫|$)")


def _severity_from_text(lower: str) -> str:
    if any(k in lower for k in ("severe", "गंभीर", "critical", "serious", "extreme", "high")):
        return "severe"
    if any(k in lower for k in ("moderate", "मध्यम", "medium")):
        return "moderate"
    if any(k in lower for k in ("mild", "हल्का", "light", "low")):
        return "mild"
    return "moderate"


def _affected_part_from_text(lower: str) -> str:
    if "leaves" in lower or "पत्ती" in lower:
        return "leaves"
    if "stem" in lower or "तना" in lower:
        return "stems"
    if "root" in lower or "जड़" in lower:
        return "roots"
    if "fruit" in lower or "फल" in lower:
        return "fruits"
    if "panicle" in lower or "बाली" in lower:
        return "panicles"
    return "leaves"


def extract_disease_info(text: str) -> Dict[str, str]:
    """Pull disease name, severity, affected part and remedy out of a free-text diagnosis."""
    text = text or ""
    name = "Unknown"
    first_line = text.split("\n", 1)[0]
    m = _BOLD.search(first_line)
    if m:
        name = _PAREN.sub("", m.group(1)).strip() or "Unknown"

    lower = text.lower()
    remedy_match = _REMEDY.search(text)
    remedy = remedy_match.group(1)[:400].strip() if remedy_match else text[:400].strip()
    return {
        "disease_name": name[:200],
        "severity": _severity_from_text(lower),
        "affected_part": _affected_part_from_text(lower),
        "remedy": remedy,
    }
