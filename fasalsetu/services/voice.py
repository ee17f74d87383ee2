"""Google Cloud Text-to-Speech with a fixed catalogue of Indian-language voices."""
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from fasalsetu import config

logger = logging.getLogger(__name__)

TTS_API_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"


class VoiceOption(BaseModel):
    id: str
    name: str
    gender: str
    language: str
    accent: str
    personality: str
    description: str
    voiceURI: str
    rate: float
    volume: float


AVAILABLE_VOICES: List[VoiceOption] = [
    VoiceOption(id="sarah-supportive", name="Sarah", gender="female", language="en-IN",
                accent="Indian English", personality="supportive",
                description="Warm, caring voice (Journey)", voiceURI="en-IN-Journey-F", rate=0.9, volume=0.8),
    VoiceOption(id="raj-friendly", name="Raj", gender="male", language="en-IN",
                accent="Indian English", personality="friendly",
                description="Encouraging friend voice (Journey)", voiceURI="en-IN-Journey-D", rate=1.0, volume=0.8),
    VoiceOption(id="priya-professional", name="Dr. Priya", gender="female", language="hi-IN",
                accent="Hindi", personality="professional",
                description="Professional voice (Journey Hindi)", voiceURI="hi-IN-Journey-F", rate=0.9, volume=0.8),
    VoiceOption(id="arjun-confident", name="Arjun", gender="male", language="hi-IN",
                accent="Hindi", personality="energetic",
                description="Confident motivator voice (Journey Hindi)", voiceURI="hi-IN-Journey-D", rate=1.0, volume=0.9),
    VoiceOption(id="rohan-calm", name="Rohan", gender="male", language="mr-IN",
                accent="Marathi", personality="calm",
                description="Calm guide (Neural2 Marathi)", voiceURI="mr-IN-Neural2-B", rate=0.9, volume=0.8),
    VoiceOption(id="priya-marathi", name="Priya", gender="female", language="mr-IN",
                accent="Marathi", personality="supportive",
                description="Supportive voice (Neural2 Marathi)", voiceURI="mr-IN-Neural2-A", rate=0.9, volume=0.8),
    VoiceOption(id="kavya-supportive", name="Kavya", gender="female", language="ta-IN",
                accent="Tamil", personality="supportive",
                description="Warm and caring (Neural2 Tamil)", voiceURI="ta-IN-Neural2-A", rate=0.9, volume=0.8),
    VoiceOption(id="vikram-energetic", name="Vikram", gender="male", language="te-IN",
                accent="Telugu", personality="energetic",
                description="Motivational guide (Neural2 Telugu)", voiceURI="te-IN-Neural2-B", rate=1.0, volume=0.9),
    VoiceOption(id="deepa-friendly", name="Deepa", gender="female", language="kn-IN",
                accent="Kannada", personality="friendly",
                description="Friendly companion (Neural2 Kannada)", voiceURI="kn-IN-Neural2-A", rate=0.9, volume=0.8),
]

LANGUAGE_LOCALES = {
    "en": "en-IN",
    "hi": "hi-IN",
    "mr": "mr-IN",
    "ta": "ta-IN",
    "te": "te-IN",
    "kn": "kn-IN",
    "mixed": "hi-IN",
}


def get_voice(voice_id: str) -> Optional[VoiceOption]:
    return next((v for v in AVAILABLE_VOICES if v.id == voice_id), None)


def select_voice(language: str, voice_id: Optional[str] = None) -> VoiceOption:
    """Pick the requested voice if it speaks the language, else the language default."""
    locale = LANGUAGE_LOCALES.get(language, "hi-IN")
    if voice_id:
        chosen = get_voice(voice_id)
        if chosen and chosen.language == locale:
            return chosen
        if chosen:
            logger.info("Voice %s is %s, not %s; using language default", voice_id, chosen.language, locale)
    default = next((v for v in AVAILABLE_VOICES if v.language == locale), None)
    return default or AVAILABLE_VOICES[0]


def voice_fallbacks(voice: VoiceOption) -> List[str]:
    """Voice names to try, best quality tier first."""
    lang = voice.language
    gender = "D" if voice.gender == "male" else "F"
    names = [voice.voiceURI, f"{lang}-Journey-{gender}", f"{lang}-Journey-O"]
    for tier in ("Neural2", "Wavenet", "Standard"):
        names.extend(f"{lang}-{tier}-{v}" for v in "ABCD")
    seen = set()
    return [n for n in names if not (n in seen or seen.add(n))]


def synthesize(
    text: str,
    language: str = "hi",
    voice_id: Optional[str] = None,
    speaking_rate: float = 1.0,
) -> Dict[str, Any]:
    """Synthesize MP3 speech, walking the fallback list until a voice works.

    Returns ``{"audio_content": <base64 mp3>, "voice_name", "language_code"}``.
    """
    if not config.tts_enabled():
        raise ValueError("Google TTS is disabled")
    api_key = config.get_tts_api_key()
    if not api_key:
        raise ValueError("GOOGLE_TTS_API_KEY not configured")
    text = (text or "").strip()
    if not text:
        raise ValueError("text is required")

    voice = select_voice(language, voice_id)
    with httpx.Client(timeout=30.0) as client:
        for name in voice_fallbacks(voice):
            body = {
                "input": {"text": text},
                "voice": {"languageCode": voice.language, "name": name},
                "audioConfig": {
                    "audioEncoding": "MP3",
                    "speakingRate": speaking_rate,
                    "pitch": 0,
                    "volumeGainDb": 0,
                },
            }
            try:
                resp = client.post(TTS_API_URL, params={"key": api_key}, json=body)
            except httpx.HTTPError as e:
                logger.warning("TTS request with %s failed: %s", name, e)
                continue
            if resp.status_code != 200:
                logger.warning("Voice %s rejected (%s)", name, resp.status_code)
                continue
            audio = resp.json().get("audioContent")
            if audio:
                logger.info("Synthesized %d chars with %s", len(text), name)
                return {"audio_content": audio, "voice_name": name, "language_code": voice.language}

    raise ValueError("All Google TTS voice options failed")
