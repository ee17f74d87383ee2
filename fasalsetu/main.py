import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError
from pydantic import BaseModel, Field
from supabase import Client

from fasalsetu import __version__, config
from fasalsetu import auth as auth_module
from fasalsetu.agents.crop_advisory import (
    ChatMessage,
    CropAdvisoryAI,
    FarmData,
    FarmerContext,
    FarmerProfile,
    WeatherData,
    fetch_farm_context,
    merge_context,
)
from fasalsetu.auth import AuthUser, current_user
from fasalsetu.db import crops as crops_db
from fasalsetu.db import disease_logs, get_client, soil as soil_db, suggestions as suggestions_db, users
from fasalsetu.services import alerts as alerts_service
from fasalsetu.services import geolocation, soil as soil_service, voice, vision
from fasalsetu.services.crop_status import crop_status
from fasalsetu.services.images import decode_base64_image
from fasalsetu.services.weather import fetch_forecast, weather_summary

logging.basicConfig(
    level=config.get_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="FasalSetu API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

advisor = CropAdvisoryAI()


@app.exception_handler(APIError)
async def postgrest_error_handler(request: Request, exc: APIError):
    message = getattr(exc, "message", None) or str(exc)
    logger.error("Database error on %s %s: %s", request.method, request.url.path, message)
    return JSONResponse(status_code=502, content={"detail": f"Database error: {message}"})


def get_public_db() -> Client:
    try:
        return get_client()
    except ValueError as e:
        raise HTTPException(status_code=502, detail=str(e))


def get_db(user: AuthUser = Depends(current_user)) -> Client:
    try:
        return get_client(user.token)
    except ValueError as e:
        raise HTTPException(status_code=502, detail=str(e))


# ---- request models ----

class OtpRequest(BaseModel):
    phone: str


class VerifyRequest(BaseModel):
    phone: str
    otp: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    farm_size: Optional[float] = None
    preferred_language: Optional[str] = None


class LocationUpdate(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class CropCreate(BaseModel):
    crop_name: str
    sowing_date: date
    current_stage: Optional[str] = None
    expected_harvest_date: Optional[date] = None
    predicted_yield: Optional[float] = None


class CropUpdate(BaseModel):
    crop_name: Optional[str] = None
    sowing_date: Optional[date] = None
    expected_harvest_date: Optional[date] = None
    current_stage: Optional[str] = None
    predicted_yield: Optional[float] = None


class StatusUpdate(BaseModel):
    status: str


class DetectRequest(BaseModel):
    image_base64: str
    crop_id: Optional[int] = None


class ChatRequest(BaseModel):
    message: str = ""
    language: Optional[str] = None
    crop: Optional[str] = None
    image_base64: Optional[str] = None
    farm_data: Optional[FarmData] = None
    weather: Optional[WeatherData] = None
    history: List[ChatMessage] = Field(default_factory=list)
    session_id: Optional[str] = None


class FeedbackRequest(BaseModel):
    is_helpful: bool


class TtsRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)
    language: str = "hi"
    voice_id: Optional[str] = None
    speaking_rate: float = Field(1.0, ge=0.25, le=4.0)


# ---- helpers ----

def _require_crop(db: Client, user: AuthUser, crop_id: int) -> Dict[str, Any]:
    crop = crops_db.get_crop(db, user.id, crop_id)
    if not crop:
        raise HTTPException(status_code=404, detail="Crop not found")
    return crop


def _coords(db: Client, user: AuthUser, lat: Optional[float], lon: Optional[float]) -> Dict[str, Any]:
    """Explicit coordinates, else the stored location, else the fallback location."""
    if lat is not None and lon is not None:
        return {"latitude": lat, "longitude": lon}
    stored = users.get_location(db, user.id)
    return stored or dict(geolocation.FALLBACK_LOCATION)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


# ---- health & auth ----

@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": __version__}


@app.post("/api/auth/otp")
def request_otp(req: OtpRequest, db: Client = Depends(get_public_db)):
    try:
        phone = auth_module.send_otp(db, req.phone)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("OTP request failed")
        raise HTTPException(status_code=502, detail=f"OTP request failed: {e}")
    return {"phone": phone, "sent": True}


@app.post("/api/auth/verify")
def verify_otp(req: VerifyRequest, db: Client = Depends(get_public_db)):
    try:
        return auth_module.verify_otp(db, req.phone, req.otp)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionError:
        raise HTTPException(status_code=401, detail="Invalid OTP")
    except Exception as e:
        logger.warning("OTP verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid OTP")


# ---- profile & location ----

@app.get("/api/me")
def get_me(user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    profile = users.get_user(db, user.id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@app.patch("/api/me")
def update_me(req: ProfileUpdate, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    try:
        profile = users.update_profile(db, user.id, req.name, req.farm_size, req.preferred_language)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@app.get("/api/location")
def get_location(user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    stored = users.get_location(db, user.id)
    if not stored:
        fallback = dict(geolocation.FALLBACK_LOCATION)
        return {"location": fallback, "display": geolocation.format_location(fallback),
                "is_fallback": True, "should_update": True}
    return {
        "location": stored,
        "display": geolocation.format_location(stored),
        "is_fallback": False,
        "should_update": geolocation.should_update_location(stored.get("location_updated_at")),
    }


@app.put("/api/location")
def put_location(req: LocationUpdate, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    try:
        location = geolocation.resolve_location(
            req.latitude, req.longitude, req.accuracy, req.city, req.state, req.country
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    saved = users.save_location(db, user.id, location)
    return {"location": location, "display": geolocation.format_location(location),
            "location_updated_at": saved["location_updated_at"]}


# ---- crops ----

@app.get("/api/crops")
def list_crops(include_inactive: bool = False, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    rows = crops_db.get_all_crops(db, user.id) if include_inactive else crops_db.get_active_crops(db, user.id)
    out = []
    for crop in rows:
        item = dict(crop)
        item["status"] = crop_status(db, user.id, crop) if crop.get("is_active", True) else None
        out.append(item)
    return {"crops": out}


@app.post("/api/crops", status_code=201)
def create_crop(req: CropCreate, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    try:
        return crops_db.add_crop_cycle(
            db, user.id, req.crop_name, req.sowing_date,
            current_stage=req.current_stage,
            expected_harvest=_iso(req.expected_harvest_date),
            predicted_yield=req.predicted_yield,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.patch("/api/crops/{crop_id}")
def update_crop(crop_id: int, req: CropUpdate, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    _require_crop(db, user, crop_id)
    updates = req.model_dump(exclude_none=True)
    for key in ("sowing_date", "expected_harvest_date"):
        if key in updates:
            updates[key] = updates[key].isoformat()
    updated = crops_db.update_crop_cycle(db, user.id, crop_id, updates)
    if not updated:
        raise HTTPException(status_code=404, detail="Crop not found")
    return updated


@app.delete("/api/crops/{crop_id}")
def delete_crop(crop_id: int, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    if not crops_db.delete_crop_cycle(db, user.id, crop_id):
        raise HTTPException(status_code=404, detail="Crop not found")
    return {"deleted": True, "crop_id": crop_id}


@app.post("/api/crops/{crop_id}/harvest")
def harvest_crop(crop_id: int, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    if not crops_db.mark_harvested(db, user.id, crop_id):
        raise HTTPException(status_code=404, detail="Crop not found")
    return {"crop_id": crop_id, "is_active": False}


@app.get("/api/crops/{crop_id}/status")
def get_crop_status(crop_id: int, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    crop = _require_crop(db, user, crop_id)
    return {"crop_id": crop_id, "status": crop_status(db, user.id, crop)}


@app.put("/api/crops/{crop_id}/status")
def put_crop_status(crop_id: int, req: StatusUpdate, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    _require_crop(db, user, crop_id)
    try:
        crops_db.set_manual_status(db, user.id, crop_id, req.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"crop_id": crop_id, "status": req.status}


# ---- disease ----

@app.get("/api/disease-logs")
def list_disease_logs(
    crop_id: Optional[int] = None,
    limit: int = 50,
    user: AuthUser = Depends(current_user),
    db: Client = Depends(get_db),
):
    return {"logs": disease_logs.list_disease_logs(db, user.id, crop_id, limit=max(1, min(limit, 200)))}


@app.post("/api/disease/detect")
def detect_disease(req: DetectRequest, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    try:
        image_bytes = decode_base64_image(req.image_base64)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if req.crop_id is not None:
        _require_crop(db, user, req.crop_id)
    try:
        return vision.detect_disease_from_image(db, user.id, image_bytes, crop_cycle_id=req.crop_id)
    except ValueError as e:
        raise HTTPException(status_code=502, detail=str(e))


# ---- soil ----

def _soil_payload(soil: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not soil:
        return {"soil": None}
    return {
        "soil": soil,
        "interpretation": soil_service.interpret_soil(soil),
        "report": soil_service.format_soil_report(soil),
    }


def _load_soil(db: Client, user: AuthUser, force: bool) -> Dict[str, Any]:
    loc = users.get_location(db, user.id) or {}
    soil = soil_service.get_or_refresh_soil(
        db, user.id,
        loc.get("latitude"), loc.get("longitude"),
        loc.get("city"), loc.get("state"), loc.get("country"),
        force=force,
    )
    return _soil_payload(soil)


@app.get("/api/soil")
def get_soil(user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    return _load_soil(db, user, force=False)


@app.post("/api/soil/refresh")
def refresh_soil(user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    if not users.get_location(db, user.id):
        raise HTTPException(status_code=400, detail="Save a location before refreshing soil data")
    return _load_soil(db, user, force=True)


@app.get("/api/soil/history")
def soil_history(user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    return {"samples": soil_db.list_soil_samples(db, user.id)}


# ---- weather & alerts ----

@app.get("/api/weather")
def get_weather(
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    user: AuthUser = Depends(current_user),
    db: Client = Depends(get_db),
):
    loc = _coords(db, user, lat, lon)
    try:
        forecast = fetch_forecast(loc["latitude"], loc["longitude"], days=1)
    except ValueError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"source": forecast.get("source"), "location": loc, **weather_summary(forecast)}


@app.get("/api/weather/forecast")
def get_weather_forecast(
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    days: int = 7,
    user: AuthUser = Depends(current_user),
    db: Client = Depends(get_db),
):
    loc = _coords(db, user, lat, lon)
    try:
        return fetch_forecast(loc["latitude"], loc["longitude"], days=days)
    except ValueError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/api/alerts")
def get_alerts(
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    user: AuthUser = Depends(current_user),
    db: Client = Depends(get_db),
):
    loc = _coords(db, user, lat, lon)
    try:
        forecast = fetch_forecast(loc["latitude"], loc["longitude"], days=7)
    except ValueError as e:
        raise HTTPException(status_code=502, detail=str(e))
    crops = crops_db.get_active_crops(db, user.id)
    soil = soil_db.latest_soil_sample(db, user.id)
    recent = disease_logs.recent_disease_logs(db, user.id, days=7)
    alerts = alerts_service.generate_smart_alerts(forecast, crops, soil, recent)
    return {"alerts": [a.model_dump() for a in alerts], "source": forecast.get("source")}


# ---- advisory ----

@app.post("/api/chat")
def chat(req: ChatRequest, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    if not req.message.strip() and not req.image_base64:
        raise HTTPException(status_code=400, detail="message or image_base64 required")
    image_bytes = None
    if req.image_base64:
        try:
            image_bytes = decode_base64_image(req.image_base64)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    farm = req.farm_data.model_copy() if req.farm_data else FarmData()
    if req.crop is not None:
        farm = FarmData(**{**farm.model_dump(exclude_unset=True), "current_crop": req.crop})
    request_ctx = FarmerContext(
        session_id=req.session_id,
        farmer_profile=FarmerProfile(preferred_language=req.language),
        farm_data=farm,
        weather_data=req.weather,
        conversation_history=req.history,
    )
    result = advisor.chat(db, user.id, req.message.strip(), request_ctx, image_bytes=image_bytes)
    result["response"] = result["response"].model_dump()
    return result


@app.get("/api/suggestions")
def get_suggestions(
    refresh: bool = False,
    language: Optional[str] = None,
    user: AuthUser = Depends(current_user),
    db: Client = Depends(get_db),
):
    if not refresh:
        existing = suggestions_db.get_active_suggestions(db, user.id)
        if existing:
            return {"suggestions": existing, "generated": False}

    ctx = merge_context(
        fetch_farm_context(db, user.id),
        FarmerContext(farmer_profile=FarmerProfile(preferred_language=language)),
    )
    crop_context = {
        "location": ctx.farmer_profile.location,
        "current_crop": ctx.farm_data.current_crop,
        "soil_type": ctx.farm_data.soil_type,
        "language": ctx.language,
    }
    saved = []
    for s in advisor.generate_suggestions(ctx):
        saved.append(suggestions_db.create_suggestion(
            db, user.id, s.title, s.description, s.category,
            confidence=s.confidence,
            crop_context=crop_context,
            ai_model=advisor.model_name,
            ttl_days=config.get_suggestion_ttl_days(),
        ))
    return {"suggestions": saved, "generated": True}


@app.post("/api/suggestions/cleanup")
def cleanup_suggestions(user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    return {"deleted": suggestions_db.delete_expired_suggestions(db, user.id)}


@app.post("/api/suggestions/{suggestion_id}/feedback")
def suggestion_feedback(
    suggestion_id: int, req: FeedbackRequest, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)
):
    if not suggestions_db.mark_suggestion_helpful(db, user.id, suggestion_id, req.is_helpful):
        raise HTTPException(status_code=404, detail="Suggestion not found")
    return {"suggestion_id": suggestion_id, "is_helpful": req.is_helpful}


@app.delete("/api/suggestions/{suggestion_id}")
def dismiss_suggestion(suggestion_id: int, user: AuthUser = Depends(current_user), db: Client = Depends(get_db)):
    if not suggestions_db.deactivate_suggestion(db, user.id, suggestion_id):
        raise HTTPException(status_code=404, detail="Suggestion not found")
    return {"suggestion_id": suggestion_id, "is_active": False}


# ---- voice ----

@app.get("/api/voices")
def list_voices(language: Optional[str] = None):
    voices = voice.AVAILABLE_VOICES
    if language:
        locale = voice.LANGUAGE_LOCALES.get(language, language)
        voices = [v for v in voices if v.language == locale]
    return {"voices": [v.model_dump() for v in voices], "tts_enabled": config.tts_enabled()}


@app.post("/api/tts")
def text_to_speech(req: TtsRequest, user: AuthUser = Depends(current_user)):
    try:
        return voice.synthesize(req.text, req.language, req.voice_id, req.speaking_rate)
    except ValueError as e:
        raise HTTPException(status_code=502, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
