"""External integrations: Gemini, Cloud Vision, TTS, weather, soil and geocoding."""
