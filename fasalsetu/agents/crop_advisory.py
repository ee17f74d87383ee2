"""
Crop advisory agent for FasalSetu.

Builds a farmer context from the database (location, latest soil sample,
latest active crop), merges in what the client sent, and asks Gemini for
advice in the farmer's language. Text questions get a JSON reply; photos
get a structured plain-text diagnosis. Any model failure falls back to a
canned reply in the same language.
"""
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError
from supabase import Client

from fasalsetu import config
from fasalsetu.db import crops as crops_db
from fasalsetu.db import disease_logs, soil as soil_db, storage, users
from fasalsetu.services import gemini, vision
from fasalsetu.services.geolocation import format_location
from fasalsetu.services.images import shrink_image
from fasalsetu.services.weather import fetch_forecast, weather_summary

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "hi": "Hindi (हिंदी)",
    "mr": "Marathi (मराठी)",
    "te": "Telugu (తెలుగు)",
    "ta": "Tamil (தமிழ்)",
    "en": "English",
    "mixed": "Hinglish (mix of Hindi and English)",
}

LANGUAGE_INSTRUCTIONS = {
    "en": "RESPOND ONLY IN ENGLISH. DO NOT use Hindi, Marathi, Telugu, Tamil, or any other language.",
    "hi": "केवल हिंदी में जवाब दें। अंग्रेजी या अन्य भाषा का उपयोग न करें।",
    "mr": "फक्त मराठीत उत्तर द्या। इंग्रजी किंवा इतर भाषा वापरू नका।",
    "te": "తెలుగులో మాత్రమే సమాధానం ఇవ్వండి। ఇంగ్లీష్ లేదా ఇతర భాషలను ఉపయోగించవద్దు।",
    "ta": "தமிழில் மட்டும் பதிலளிக்கவும். ஆங்கிலம் அல்லது பிற மொழிகளைப் பயன்படுத்த வேண்டாம்.",
    "mixed": "Respond in Hinglish (mix of Hindi and English). You can use both languages naturally.",
}

FALLBACK_MESSAGES = {
    "hi": "नमस्ते! मैं आपकी खेती में मदद करने के लिए यहाँ हूँ। कृपया अपना सवाल फिर से पूछें।",
    "mr": "नमस्कार! मी तुमच्या शेतीसाठी मदत करण्यासाठी येथे आहे। कृपया तुमचा प्रश्न पुन्हा विचारा।",
    "te": "నమస్కారం! నేను మీ వ్యవసాయంలో సహాయం చేయడానికి ఇక్కడ ఉన్నాను। దయచేసి మీ ప్రశ్నను మళ్లీ అడగండి।",
    "ta": "வணக்கம்! உங்கள் விவசாயத்தில் உதவ நான் இங்கே இருக்கிறேன். தயவுசெய்து உங்கள் கேள்வியை மீண்டும் கேளுங்கள்.",
    "en": "Hello! I am here to help with your farming. Please ask your question again.",
    "mixed": "नमस्ते! मैं आपकी farming में help करने के लिए यहाँ हूँ। Please ask your question again।",
}

CATEGORIES = (
    "crop_planning", "soil_advice", "fertilizer", "irrigation",
    "disease_pest", "weather", "harvest", "market", "general",
)

HEALTHY_KEYWORDS = (
    "healthy", "स्वस्थ", "ठीक है", "theek hai", "good", "fine", "recovered",
    "better", "no problem", "कोई समस्या नहीं", "सुधर गया", "अच्छा है",
)
CROP_WORDS = ("crop", "फसल", "plant", "पौधा")

DEFAULT_PHOSPHORUS = 45
DEFAULT_POTASSIUM = 180

ADVICE_CONFIG = {"temperature": 0.4, "top_p": 0.8, "top_k": 20, "max_output_tokens": 2048, "timeout": 25.0}
SUGGESTION_CONFIG = {"temperature": 0.6, "top_p": 0.9, "top_k": 30, "max_output_tokens": 1500, "timeout": 25.0}


class SoilTexture(BaseModel):
    clay: float = 0
    sand: float = 0
    silt: float = 0


class SoilNPK(BaseModel):
    nitrogen: float = 0
    phosphorus: float = DEFAULT_PHOSPHORUS
    potassium: float = DEFAULT_POTASSIUM


class FarmerProfile(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    farm_size: Optional[float] = None
    preferred_language: Optional[str] = None
    experience_level: Optional[str] = None


class FarmData(BaseModel):
    farm_size: Optional[float] = None
    soil_type: Optional[str] = None
    soil_ph: Optional[float] = None
    soil_npk: Optional[SoilNPK] = None
    current_crop: Optional[str] = None
    crop_stage: Optional[str] = None
    irrigation_type: Optional[str] = None
    soil_organic_carbon: Optional[float] = None
    soil_cec: Optional[float] = None
    soil_texture: Optional[SoilTexture] = None
    soil_bulk_density: Optional[float] = None


class WeatherData(BaseModel):
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    rainfall: Optional[float] = None
    forecast: Optional[str] = None


class ChatMessage(BaseModel):
    role: str
    content: str


class FarmerContext(BaseModel):
    farmer_id: Optional[str] = None
    session_id: Optional[str] = None
    farmer_profile: FarmerProfile = Field(default_factory=FarmerProfile)
    farm_data: FarmData = Field(default_factory=FarmData)
    weather_data: Optional[WeatherData] = None
    conversation_history: List[ChatMessage] = Field(default_factory=list)

    @property
    def language(self) -> str:
        lang = self.farmer_profile.preferred_language or "mixed"
        return lang if lang in LANGUAGE_NAMES else "mixed"


class SuggestedAction(BaseModel):
    action: str
    priority: str = "medium"
    timing: str = "this_week"


class VisualAids(BaseModel):
    show_image: Optional[bool] = None
    image_description: Optional[str] = None
    show_video: Optional[bool] = None
    video_topic: Optional[str] = None


class CropAdvisoryResponse(BaseModel):
    message: str
    detected_language: str
    category: str = "general"
    suggested_actions: List[SuggestedAction] = Field(default_factory=list)
    quick_tips: List[str] = Field(default_factory=list)
    follow_up_questions: List[str] = Field(default_factory=list)
    visual_aids: Optional[VisualAids] = None
    alert_level: str = "none"
    confidence: float = 0.7


class CropSuggestion(BaseModel):
    title: str
    description: str
    category: str = "general"
    confidence: float = 0.7


def current_season(today: Optional[date] = None) -> str:
    month = (today or date.today()).month
    if month >= 11 or month <= 2:
        return "Winter (Rabi)"
    if 3 <= month <= 6:
        return "Summer (Zaid)"
    return "Monsoon (Kharif)"


def is_healthy_report(text: str) -> bool:
    """True when the farmer says their crop is fine again ("my crop is healthy now")."""
    lower = (text or "").lower()
    return any(k in lower for k in HEALTHY_KEYWORDS) and any(w in lower for w in CROP_WORDS)


def fetch_farm_context(client: Client, user_id: str, include_weather: bool = True) -> FarmerContext:
    """Context stored for this farmer. Lookup errors give an empty context."""
    try:
        user = users.get_user(client, user_id) or {}
        soil = soil_db.latest_soil_sample(client, user_id)
        crop = crops_db.get_latest_active_crop(client, user_id)
    except Exception:
        logger.exception("Failed to load farm context for %s", user_id)
        return FarmerContext(farmer_id=user_id)

    location = "Unknown"
    if user.get("city") or user.get("state") or user.get("country"):
        location = format_location(user)
    elif user.get("latitude") is not None and user.get("longitude") is not None:
        location = format_location({"latitude": user["latitude"], "longitude": user["longitude"]})

    farm = FarmData(
        farm_size=user.get("farm_size"),
        soil_type=(soil or {}).get("soil_type_name") or "Unknown",
        soil_ph=(soil or {}).get("ph_level"),
        soil_npk=SoilNPK(nitrogen=(soil or {}).get("total_nitrogen") or 0),
        current_crop=(crop or {}).get("crop_name"),
        crop_stage=(crop or {}).get("current_stage") or "planning",
        irrigation_type="drip",
        soil_organic_carbon=(soil or {}).get("organic_carbon"),
        soil_cec=(soil or {}).get("cec"),
        soil_texture=SoilTexture(
            clay=soil.get("clay_pct") or 0,
            sand=soil.get("sand_pct") or 0,
            silt=soil.get("silt_pct") or 0,
        ) if soil else None,
        soil_bulk_density=(soil or {}).get("bulk_density"),
    )

    weather = None
    if include_weather and user.get("latitude") is not None and user.get("longitude") is not None:
        try:
            summary = weather_summary(fetch_forecast(user["latitude"], user["longitude"], days=1))
            weather = WeatherData(**{k: summary.get(k) for k in ("temperature", "humidity", "rainfall", "forecast")})
        except ValueError as e:
            logger.warning("Weather for advisory context unavailable: %s", e)

    return FarmerContext(
        farmer_id=user_id,
        farmer_profile=FarmerProfile(
            name=user.get("name") or "Farmer",
            location=location,
            farm_size=user.get("farm_size"),
            preferred_language=user.get("preferred_language") or "mixed",
            experience_level="intermediate",
        ),
        farm_data=farm,
        weather_data=weather,
    )


def merge_context(db_context: FarmerContext, request_context: Optional[FarmerContext]) -> FarmerContext:
    """Overlay request values on the stored context.

    Non-null request fields win. The request's language and current crop
    always take precedence, even an empty crop string.
    """
    if request_context is None:
        return db_context
    profile = db_context.farmer_profile.model_dump()
    profile.update(request_context.farmer_profile.model_dump(exclude_none=True))
    profile["preferred_language"] = (
        request_context.farmer_profile.preferred_language
        or db_context.farmer_profile.preferred_language
        or "mixed"
    )
    farm = db_context.farm_data.model_dump()
    farm.update(request_context.farm_data.model_dump(exclude_none=True))
    if "current_crop" in request_context.farm_data.model_fields_set:
        farm["current_crop"] = request_context.farm_data.current_crop

    return FarmerContext(
        farmer_id=db_context.farmer_id or request_context.farmer_id,
        session_id=request_context.session_id or db_context.session_id,
        farmer_profile=FarmerProfile(**profile),
        farm_data=FarmData(**farm),
        weather_data=request_context.weather_data or db_context.weather_data,
        conversation_history=request_context.conversation_history or db_context.conversation_history,
    )


def _or_unknown(value: Any) -> Any:
    return value if value not in (None, "") else "Unknown"


def _soil_lines(farm: FarmData, show_missing: bool = False) -> List[str]:
    lines = [f"Soil Type: {_or_unknown(farm.soil_type)}", f"Soil pH: {_or_unknown(farm.soil_ph)}"]
    optional = [
        ("Soil Texture", farm.soil_texture and
         f"{farm.soil_texture.clay}% clay, {farm.soil_texture.sand}% sand, {farm.soil_texture.silt}% silt"),
        ("Organic Carbon", farm.soil_organic_carbon and f"{farm.soil_organic_carbon} g/kg"),
        ("CEC", farm.soil_cec and f"{farm.soil_cec} cmol(+)/kg"),
        ("NPK", farm.soil_npk and
         f"N={farm.soil_npk.nitrogen}, P={farm.soil_npk.phosphorus}, K={farm.soil_npk.potassium}"),
        ("Bulk Density", farm.soil_bulk_density and f"{farm.soil_bulk_density} cg/cm³"),
    ]
    for label, value in optional:
        if value:
            lines.append(f"{label}: {value}")
        elif show_missing:
            lines.append(f"{label}: Not available")
    return lines


JSON_REPLY_SCHEMA = """{
  "message": "Your farming advice in the selected language (2-3 lines)",
  "detectedLanguage": "<language name>",
  "category": "crop_planning|soil_advice|fertilizer|irrigation|disease_pest|weather|harvest|market|general",
  "suggestedActions": [
    {"action": "Specific farming step to take", "priority": "high|medium|low", "timing": "immediate|this_week|this_month"}
  ],
  "quickTips": ["Farming tip 1", "Farming tip 2"],
  "followUpQuestions": ["Follow-up question 1?", "Follow-up question 2?"],
  "visualAids": {"showImage": true, "imageDescription": "Description of helpful image", "showVideo": false, "videoTopic": "Video topic"},
  "alertLevel": "none|info|warning|urgent",
  "confidence": 0.85
}"""


def build_farming_prompt(question: str, ctx: FarmerContext) -> str:
    lang = ctx.language
    farm = ctx.farm_data
    weather = ctx.weather_data or WeatherData()
    history = "\n".join(f"{m.role}: {m.content}" for m in ctx.conversation_history[-3:]) or "First interaction"
    return "\n".join([
        "ABSOLUTE LANGUAGE REQUIREMENT",
        LANGUAGE_INSTRUCTIONS[lang],
        f"SELECTED LANGUAGE: {LANGUAGE_NAMES[lang]}",
        "",
        'You are "FasalSetu AI", a smart farming assistant for Indian farmers.',
        "",
        "YOUR ROLE:",
        "- Help farmers with crop planning, soil health, fertilizers, pest control, weather, and harvest advice",
        "- Give SIMPLE and PRACTICAL answers with actionable details based on the soil profile",
        "- Be friendly and patient, like a helpful agriculture officer who is also a friend",
        "- For irrigation advice, consider sand/silt content (high sand = fast drainage, needs frequent watering)",
        "- For fertilizer advice, consider CEC (low CEC = apply in smaller doses)",
        "- For soil health, consider organic carbon (low = add compost/manure)",
        "",
        "FARMER CONTEXT:",
        f"Location: {_or_unknown(ctx.farmer_profile.location)}",
        f"Farm Size: {_or_unknown(farm.farm_size or ctx.farmer_profile.farm_size)} acres",
        "",
        "SOIL INFORMATION:",
        *_soil_lines(farm),
        "",
        "CROP INFORMATION:",
        f"Current Crop: {farm.current_crop or 'None'}",
        f"Crop Stage: {farm.crop_stage or 'planning'}",
        f"Irrigation: {_or_unknown(farm.irrigation_type)}",
        "",
        "WEATHER:",
        f"Temperature: {_or_unknown(weather.temperature)}°C",
        f"Humidity: {_or_unknown(weather.humidity)}%",
        f"Forecast: {weather.forecast or 'No data'}",
        "",
        "RECENT CONVERSATION:",
        history,
        "",
        f'FARMER\'S QUESTION: "{question}"',
        "",
        "Use the soil information above (texture, pH, organic carbon, CEC, NPK) to give accurate recommendations.",
        "If the question is off-topic, answer briefly and kindly, then steer back to farming.",
        "Keep answers SHORT (2-3 lines) with quantities. Set alertLevel to warning or urgent for disease, pest or weather emergencies.",
        "",
        f"REQUIRED JSON FORMAT WITH {LANGUAGE_NAMES[lang].upper()} CONTENT:",
        JSON_REPLY_SCHEMA,
        "",
        f"Now respond to the farmer's question in JSON format using {LANGUAGE_NAMES[lang]} ONLY.",
    ])


def build_image_prompt(question: str, ctx: FarmerContext) -> str:
    lang = ctx.language
    farm = ctx.farm_data
    crop = farm.current_crop or "crop"
    return "\n".join([
        'You are "FasalSetu AI", an expert agricultural pathologist and crop disease specialist.',
        "",
        f"CRITICAL: THIS IS A {crop.upper()} PLANT.",
        f"The farmer selected {crop} from their crop list. Analyse this image as {crop} ONLY",
        "and do not discuss diseases of other crops.",
        "",
        f"RESPOND IN: {LANGUAGE_NAMES[lang]}",
        LANGUAGE_INSTRUCTIONS[lang],
        "",
        "RESPONSE FORMAT (concise and actionable, plain text, not JSON):",
        f"This {crop} plant shows symptoms of **[Disease Name]** ([scientific name]).",
        "",
        "🔍 **Why it looks like [Disease Name]**",
        "• [Key symptom 1]",
        "• [Key symptom 2]",
        "• [Key symptom 3]",
        "",
        f"🌱 **What this disease does to {crop}**",
        "[1-2 sentences: parts affected + yield impact; say whether severity is mild, moderate or severe]",
        "",
        f"🧪 **Immediate Action for {crop}**",
        "**Organic Control:**",
        "• [Remedy 1 with dosage]",
        "• [Remedy 2 with dosage]",
        "**Chemical Control** (choose ONE):",
        "| Product | Dosage |",
        "| [Product 1] | [dosage/liter] |",
        "| [Product 2] | [dosage/liter] |",
        "Spray in morning/evening. Repeat after [X] days.",
        "",
        f"🚫 **Prevention for {crop}**",
        "✔ [Tip 1]",
        "✔ [Tip 2]",
        "✔ [Tip 3]",
        "",
        "FARMER CONTEXT:",
        f"Location: {_or_unknown(ctx.farmer_profile.location)}",
        f"SELECTED CROP: {_or_unknown(farm.current_crop)}",
        f"Crop Stage: {_or_unknown(farm.crop_stage)}",
        f"Soil Type: {_or_unknown(farm.soil_type)}",
        f"Soil pH: {_or_unknown(farm.soil_ph)}",
        "",
        f'FARMER\'S QUESTION: "{question or "What is wrong with my crop?"}"',
        "",
        "If you cannot identify the disease clearly, say so and suggest consulting a local expert.",
        "Give exact product names and dosages, mention safety precautions, and keep it under 15 lines.",
    ])


def build_suggestions_prompt(ctx: FarmerContext, today: Optional[date] = None) -> str:
    lang = ctx.language
    farm = ctx.farm_data
    weather = ctx.weather_data or WeatherData()
    return "\n".join([
        'You are "FasalSetu AI", an expert agricultural advisor for Indian farmers.',
        "",
        "TASK: Generate 4 personalized crop suggestions for this farmer.",
        "",
        "FARMER CONTEXT:",
        f"Location: {_or_unknown(ctx.farmer_profile.location)}",
        f"Farm Size: {_or_unknown(farm.farm_size or ctx.farmer_profile.farm_size)} acres",
        "",
        "SOIL INFORMATION (use this for crop recommendations):",
        *_soil_lines(farm, show_missing=True),
        "",
        "CROP & CLIMATE:",
        f"Current Crop: {farm.current_crop or 'None'}",
        f"Crop Stage: {farm.crop_stage or 'planning'}",
        f"Temperature: {_or_unknown(weather.temperature)}°C",
        f"Season: {current_season(today)}",
        "",
        f"LANGUAGE: {LANGUAGE_NAMES[lang]}",
        LANGUAGE_INSTRUCTIONS[lang],
        "",
        "RESPONSE FORMAT (JSON):",
        '{"suggestions": [{"title": "Short catchy title (5-7 words)", '
        '"description": "Actionable advice (2-3 sentences, 40-60 words)", '
        '"category": "seasonal|soil|market|disease|fertilizer|irrigation", "confidence": 0.85}]}',
        "",
        "REQUIREMENTS:",
        "- Generate exactly 4 suggestions, each from a different category",
        "- Be specific to the farmer's location and soil",
        '- Include crop varieties (e.g. "DBW-187 wheat") and expected yield or price where relevant',
        "",
        "Now generate 4 personalized suggestions for this farmer in JSON format.",
    ])


_ACTION_BLOCK = re.compile(r"\*\*1️⃣.*?\*\*[\s\S]*?(?=\*\*2️⃣|\*\*🚫|$)")
_PREVENTION = re.compile(r"🚫.*?Prevention.*?\n([\s\S]*?)$", re.IGNORECASE)
_TICK = re.compile(r"✔\s*(.+)")


def _actions_from_json(raw: Any) -> List[SuggestedAction]:
    out = []
    for item in raw or []:
        if isinstance(item, dict) and item.get("action"):
            out.append(SuggestedAction(
                action=str(item["action"]),
                priority=item.get("priority") or "medium",
                timing=item.get("timing") or "this_week",
            ))
    return out


def _visual_aids(raw: Any) -> Optional[VisualAids]:
    if not isinstance(raw, dict):
        return None
    return VisualAids(
        show_image=raw.get("showImage"),
        image_description=raw.get("imageDescription"),
        show_video=raw.get("showVideo"),
        video_topic=raw.get("videoTopic"),
    )


def _response_from_json(parsed: Dict[str, Any], ctx: FarmerContext) -> CropAdvisoryResponse:
    category = parsed.get("category") or "general"
    return CropAdvisoryResponse(
        message=parsed.get("message") or "मैं आपकी मदद करने के लिए यहाँ हूँ।",
        detected_language=parsed.get("detectedLanguage") or LANGUAGE_NAMES[ctx.language],
        category=category if category in CATEGORIES else "general",
        suggested_actions=_actions_from_json(parsed.get("suggestedActions")),
        quick_tips=[str(t) for t in parsed.get("quickTips") or []],
        follow_up_questions=[str(q) for q in parsed.get("followUpQuestions") or []],
        visual_aids=_visual_aids(parsed.get("visualAids")),
        alert_level=parsed.get("alertLevel") or "none",
        confidence=parsed.get("confidence") or 0.7,
    )


def parse_response(text: str, ctx: FarmerContext) -> CropAdvisoryResponse:
    """Parse a model reply: JSON when it is JSON, the plain-text diagnosis format otherwise."""
    cleaned = gemini.strip_code_fences(text)
    if cleaned.startswith("{") and cleaned.endswith("}"):
        try:
            parsed = gemini.extract_first_json_object(cleaned)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            try:
                return _response_from_json(parsed, ctx)
            except (ValidationError, TypeError, AttributeError) as e:
                logger.warning("Malformed advisory reply, using fallback: %s", e)
                return fallback_response(ctx)

    actions = []
    if _ACTION_BLOCK.search(text):
        actions.append(SuggestedAction(
            action="Follow cultural practices mentioned above", priority="high", timing="immediate"
        ))
    tips: List[str] = []
    prevention = _PREVENTION.search(text)
    if prevention:
        tips = [t.strip() for t in _TICK.findall(prevention.group(1))[:3]]

    lower = text.lower()
    alert = "info"
    if "severe" in lower or "urgent" in lower or "100%" in lower:
        alert = "urgent"
    elif "moderate" in lower or "significant" in lower:
        alert = "warning"

    return CropAdvisoryResponse(
        message=text,
        detected_language=ctx.language,
        category="disease_pest",
        suggested_actions=actions,
        quick_tips=tips,
        follow_up_questions=[],
        alert_level=alert,
        confidence=0.85,
    )


def fallback_response(ctx: FarmerContext) -> CropAdvisoryResponse:
    lang = ctx.language
    return CropAdvisoryResponse(
        message=FALLBACK_MESSAGES.get(lang, FALLBACK_MESSAGES["mixed"]),
        detected_language=lang,
        category="general",
        suggested_actions=[
            SuggestedAction(action="मिट्टी की जांच करें / Check soil health", priority="medium", timing="this_week")
        ],
        quick_tips=["नियमित रूप से खेत का निरीक्षण करें", "मौसम की जानकारी रखें"],
        follow_up_questions=["आप कौन सी फसल उगाना चाहते हैं?", "आपकी मिट्टी का प्रकार क्या है?"],
        alert_level="info",
        confidence=0.6,
    )


def fallback_suggestions() -> List[CropSuggestion]:
    return [
        CropSuggestion(
            title="Seasonal Crop Planning",
            description="Plan your next crop based on current season and weather conditions. "
                        "Consult with local agricultural officer for best varieties.",
            category="seasonal",
            confidence=0.6,
        ),
        CropSuggestion(
            title="Soil Health Check",
            description="Get your soil tested to know nutrient levels. "
                        "This helps choose the right crop and fertilizer for better yield.",
            category="soil",
            confidence=0.6,
        ),
        CropSuggestion(
            title="Market Price Monitoring",
            description="Check current market prices before planting. "
                        "High-demand crops can give better returns this season.",
            category="market",
            confidence=0.6,
        ),
        CropSuggestion(
            title="Disease Prevention",
            description="Choose disease-resistant crop varieties. "
                        "Regular monitoring and early treatment can save your crop.",
            category="disease",
            confidence=0.6,
        ),
    ]


def parse_suggestions(text: str) -> List[CropSuggestion]:
    try:
        parsed = gemini.extract_first_json_object(text)
    except ValueError as e:
        logger.warning("Unparseable suggestions reply: %s", e)
        return fallback_suggestions()
    if not isinstance(parsed, dict):
        logger.warning("Suggestions reply is not a JSON object, using fallback")
        return fallback_suggestions()
    items = parsed.get("suggestions")
    if not isinstance(items, list) or not items:
        return fallback_suggestions()
    out = []
    for s in items[:4]:
        if not isinstance(s, dict):
            continue
        try:
            out.append(CropSuggestion(
                title=s.get("title") or "Crop Suggestion",
                description=s.get("description") or "No description available",
                category=s.get("category") or "general",
                confidence=s.get("confidence") or 0.7,
            ))
        except ValidationError as e:
            logger.warning("Skipping malformed suggestion: %s", e)
    return out or fallback_suggestions()


class CropAdvisoryAI:
    """Gemini-backed advisor. Never raises for model problems; falls back instead."""

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or config.get_gemini_model()

    def generate_advice(
        self,
        question: str,
        context: FarmerContext,
        image_bytes: Optional[bytes] = None,
    ) -> CropAdvisoryResponse:
        if image_bytes:
            parts = [build_image_prompt(question, context), gemini.image_part(image_bytes)]
        else:
            parts = build_farming_prompt(question, context)
        try:
            text = gemini.generate_text(parts, model_name=self.model_name, **ADVICE_CONFIG)
        except Exception as e:
            logger.warning("Advisory generation failed, using fallback: %s", e)
            return fallback_response(context)
        return parse_response(text, context)

    def generate_suggestions(self, context: FarmerContext, today: Optional[date] = None) -> List[CropSuggestion]:
        prompt = build_suggestions_prompt(context, today)
        try:
            text = gemini.generate_text(prompt, model_name=self.model_name, **SUGGESTION_CONFIG)
        except Exception as e:
            logger.warning("Suggestion generation failed, using fallback: %s", e)
            return fallback_suggestions()
        return parse_suggestions(text)

    def chat(
        self,
        client: Client,
        user_id: str,
        question: str,
        request_context: Optional[FarmerContext] = None,
        image_bytes: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        """One chatbot turn.

        Photos are uploaded, diagnosed and logged against the selected
        crop's active cycle (or the latest active crop). A text message
        saying the crop is healthy again resets that crop's status.
        """
        ctx = merge_context(fetch_farm_context(client, user_id), request_context)
        result: Dict[str, Any] = {"image_url": None, "disease_log": None, "status_updated": None}

        if image_bytes:
            image_bytes = shrink_image(image_bytes)
            result["image_url"] = storage.upload_image(client, user_id, image_bytes, folder="crop-images")

        response = self.generate_advice(question, ctx, image_bytes=image_bytes)
        result["response"] = response

        if image_bytes and result["image_url"] and response.confidence > 0.6:
            info = vision.extract_disease_info(response.message)
            crop = None
            if ctx.farm_data.current_crop:
                crop = crops_db.get_latest_active_crop(client, user_id, ctx.farm_data.current_crop)
            crop = crop or crops_db.get_latest_active_crop(client, user_id)
            result["disease_log"] = disease_logs.save_disease_log(
                client,
                user_id,
                disease_name=info["disease_name"],
                severity=info["severity"],
                image_url=result["image_url"],
                confidence=0.85,
                remedy=info["remedy"],
                notes="Detected via Gemini AI with image analysis",
                crop_cycle_id=(crop or {}).get("crop_id"),
            )
        elif not image_bytes and is_healthy_report(question):
            crop = crops_db.get_latest_active_crop(client, user_id)
            if crop and crops_db.set_manual_status(client, user_id, crop["crop_id"], "healthy"):
                result["status_updated"] = {"crop_id": crop["crop_id"], "status": "healthy"}
                logger.info("Crop %s marked healthy from chat", crop["crop_id"])

        return result
