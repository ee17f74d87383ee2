from datetime import date

import pytest

from fasalsetu.agents import crop_advisory
from fasalsetu.agents.crop_advisory import (
    CropAdvisoryAI,
    FarmData,
    FarmerContext,
    FarmerProfile,
    current_season,
    fallback_response,
    is_healthy_report,
    merge_context,
    parse_response,
    parse_suggestions,
)
from fasalsetu.db import crops as crops_db

DIAGNOSIS = (
    "This Tomato plant shows symptoms of **Early Blight** (Alternaria solani).\n"
    "🔍 **Why it looks like Early Blight**\n"
    "• Concentric rings on lower leaves\n"
    "🌱 **What this disease does to Tomato**\n"
    "Moderate infection of the leaves, yield loss if untreated.\n"
    "🧪 **Immediate Action for Tomato**\n"
    "• Spray Mancozeb 2.5 g/L\n"
    "🚫 **Prevention for Tomato**\n"
    "✔ Rotate crops\n"
    "✔ Remove plant debris\n"
)


def _ctx(language="en", **farm):
    return FarmerContext(farmer_profile=FarmerProfile(preferred_language=language), farm_data=FarmData(**farm))


class TestParseResponse:
    def test_json_reply(self):
        text = (
            '```json\n{"message": "Apply 50 kg urea per acre.", "category": "fertilizer", '
            '"suggestedActions": [{"action": "Apply urea", "priority": "high"}], '
            '"quickTips": ["Irrigate after application"], "alertLevel": "info", "confidence": 0.9}\n```'
        )
        resp = parse_response(text, _ctx())

        assert resp.message == "Apply 50 kg urea per acre."
        assert resp.category == "fertilizer"
        assert resp.suggested_actions[0].action == "Apply urea"
        assert resp.suggested_actions[0].timing == "this_week"
        assert resp.quick_tips == ["Irrigate after application"]
        assert resp.detected_language == "English"
        assert resp.confidence == 0.9

    def test_unknown_category_becomes_general(self):
        resp = parse_response('{"message": "ok", "category": "astrology"}', _ctx())
        assert resp.category == "general"
        assert resp.alert_level == "none"

    def test_plain_text_diagnosis(self):
        resp = parse_response(DIAGNOSIS, _ctx())

        assert resp.category == "disease_pest"
        assert resp.alert_level == "warning"
        assert resp.quick_tips == ["Rotate crops", "Remove plant debris"]
        assert resp.confidence == 0.85
        assert resp.message == DIAGNOSIS

    def test_severe_text_is_urgent(self):
        assert parse_response("Severe late blight across the field.", _ctx()).alert_level == "urgent"

    @pytest.mark.parametrize("text", [
        '{"message": "ok", "confidence": "high"}',
        '{"message": "ok", "suggestedActions": [{"action": "Spray neem", "priority": 3}]}',
        '{"message": "ok", "suggestedActions": [{"action": "Spray neem", "priority": ["high"]}]}',
        '{"message": "ok", "quickTips": 5}',
    ])
    def test_malformed_json_falls_back(self, text):
        resp = parse_response(text, _ctx("en"))
        assert resp.message.startswith("Hello!")
        assert resp.confidence == 0.6


class TestFallbacks:
    def test_fallback_in_farmer_language(self):
        resp = fallback_response(_ctx("en"))
        assert resp.message.startswith("Hello!")
        assert resp.confidence == 0.6
        assert resp.alert_level == "info"

    def test_unsupported_language_is_mixed(self):
        ctx = _ctx("fr")
        assert ctx.language == "mixed"
        assert "farming" in fallback_response(ctx).message

    def test_advice_without_model_key_falls_back(self):
        resp = CropAdvisoryAI(model_name="test-model").generate_advice("When to sow wheat?", _ctx("hi"))
        assert resp.detected_language == "hi"
        assert resp.confidence == 0.6

    def test_suggestions_parse_failure(self):
        assert [s.category for s in parse_suggestions("no json here")] == ["seasonal", "soil", "market", "disease"]
        assert len(parse_suggestions('{"suggestions": []}')) == 4

    def test_suggestions_are_capped_and_defaulted(self):
        items = ",".join('{"title": "T%d", "category": "soil"}' % i for i in range(6))
        parsed = parse_suggestions('{"suggestions": [%s]}' % items)
        assert [s.title for s in parsed] == ["T0", "T1", "T2", "T3"]
        assert parsed[0].description == "No description available"
        assert parsed[0].confidence == 0.7

    def test_suggestions_top_level_array(self):
        parsed = parse_suggestions('[{"title": "A", "description": "B"}]')
        assert [s.category for s in parsed] == ["seasonal", "soil", "market", "disease"]

    def test_malformed_suggestion_is_skipped(self):
        text = (
            '{"suggestions": [{"title": "Bad", "confidence": "high"}, '
            '{"title": "Good", "category": "soil", "confidence": 0.8}]}'
        )
        assert [s.title for s in parse_suggestions(text)] == ["Good"]

    def test_all_malformed_suggestions_fall_back(self):
        parsed = parse_suggestions('{"suggestions": [{"title": ["x"]}, {"category": 7}]}')
        assert len(parsed) == 4
        assert parsed[0].title == "Seasonal Crop Planning"


class TestContext:
    def test_season(self):
        assert current_season(date(2026, 1, 10)) == "Winter (Rabi)"
        assert current_season(date(2026, 4, 10)) == "Summer (Zaid)"
        assert current_season(date(2026, 8, 10)) == "Monsoon (Kharif)"
        assert current_season(date(2026, 11, 1)) == "Winter (Rabi)"

    def test_healthy_report(self):
        assert is_healthy_report("My crop is healthy now")
        assert is_healthy_report("मेरी फसल अब स्वस्थ है")
        assert not is_healthy_report("I am feeling fine")
        assert not is_healthy_report("My crop has yellow leaves")

    def test_request_language_and_crop_win(self):
        stored = _ctx("hi", current_crop="Wheat", soil_type="Alluvial")
        merged = merge_context(stored, _ctx("en", current_crop=""))

        assert merged.language == "en"
        assert merged.farm_data.current_crop == ""
        assert merged.farm_data.soil_type == "Alluvial"

    def test_unset_request_fields_keep_stored_values(self):
        stored = _ctx("mr", current_crop="Cotton")
        merged = merge_context(stored, FarmerContext())
        assert merged.language == "mr"
        assert merged.farm_data.current_crop == "Cotton"

    def test_farm_context_from_database(self, fake_db):
        fake_db.rows("users").append({
            "id": "u1", "name": "Ramesh", "preferred_language": "hi",
            "city": "Nashik", "state": "Maharashtra", "country": "India",
        })
        fake_db.rows("farm_soil_data").append({
            "user_id": "u1", "ph_level": 7.4, "soil_type_name": "Black Soil",
            "clay_pct": 45, "sand_pct": 20, "silt_pct": 35, "recorded_at": "2026-10-01T00:00:00+00:00",
        })
        crops_db.add_crop_cycle(fake_db, "u1", "Onion", "2026-09-01")

        ctx = crop_advisory.fetch_farm_context(fake_db, "u1")

        assert ctx.farmer_profile.location == "Nashik, Maharashtra, India"
        assert ctx.farm_data.soil_type == "Black Soil"
        assert ctx.farm_data.soil_texture.clay == 45
        assert ctx.farm_data.soil_npk.phosphorus == 45
        assert ctx.farm_data.current_crop == "Onion"
        assert ctx.weather_data is None

    def test_prompt_carries_language_and_soil(self):
        prompt = crop_advisory.build_farming_prompt("Which fertilizer?", _ctx("en", soil_type="Red Soil", soil_ph=6.2))
        assert "SELECTED LANGUAGE: English" in prompt
        assert "Soil Type: Red Soil" in prompt
        assert 'FARMER\'S QUESTION: "Which fertilizer?"' in prompt


class TestChat:
    @pytest.fixture
    def model_reply(self, monkeypatch):
        replies = []

        def fake_generate(parts, **kwargs):
            replies.append(parts)
            return DIAGNOSIS

        monkeypatch.setattr(crop_advisory.gemini, "generate_text", fake_generate)
        return replies

    def test_photo_is_logged_against_selected_crop(self, fake_db, model_reply):
        crops_db.add_crop_cycle(fake_db, "u1", "Wheat", "2026-10-01")
        tomato = crops_db.add_crop_cycle(fake_db, "u1", "Tomato", "2026-08-01")

        result = CropAdvisoryAI().chat(fake_db, "u1", "", _ctx("en", current_crop="Tomato"), image_bytes=b"photo")

        assert result["image_url"] is not None
        log = result["disease_log"]
        assert log["disease_name"] == "Early Blight"
        assert log["severity"] == "moderate"
        assert log["crop_cycle_id"] == tomato["crop_id"]
        assert log["notes"] == "Detected via Gemini AI with image analysis"
        # the image prompt is sent together with the photo
        assert isinstance(model_reply[0], list) and "TOMATO" in model_reply[0][0]

    def test_fallback_reply_is_not_logged(self, fake_db):
        crops_db.add_crop_cycle(fake_db, "u1", "Wheat", "2026-10-01")
        result = CropAdvisoryAI().chat(fake_db, "u1", "", _ctx("en"), image_bytes=b"photo")
        assert result["disease_log"] is None
        assert fake_db.rows("disease_logs") == []

    def test_failed_upload_skips_log(self, fake_db, model_reply):
        fake_db.storage.fail = True
        result = CropAdvisoryAI().chat(fake_db, "u1", "", _ctx("en"), image_bytes=b"photo")
        assert result["image_url"] is None
        assert result["disease_log"] is None

    def test_healthy_report_resets_status(self, fake_db):
        crop = crops_db.add_crop_cycle(fake_db, "u1", "Wheat", "2026-10-01")
        result = CropAdvisoryAI().chat(fake_db, "u1", "My crop is healthy now", _ctx("en"))

        assert result["status_updated"] == {"crop_id": crop["crop_id"], "status": "healthy"}
        assert crops_db.get_crop(fake_db, "u1", crop["crop_id"])["manual_status"] == "healthy"
