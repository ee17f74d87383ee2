from datetime import date, timedelta

from conftest import make_day, make_forecast
from fasalsetu.services.alerts import MAX_ALERTS, drainage_speed, format_day, generate_smart_alerts

TODAY = date(2026, 10, 19)


def _days(n=7, **overrides):
    return [make_day((TODAY + timedelta(days=i)).isoformat(), **overrides) for i in range(n)]


class TestFormatDay:
    def test_today_and_tomorrow(self):
        assert format_day("2026-10-19", TODAY) == "Today"
        assert format_day("2026-10-20", TODAY) == "Tomorrow"

    def test_later_dates_use_month_and_day(self):
        assert format_day("2026-10-24", TODAY) == "Oct 24"
        assert format_day("2026-11-02", TODAY) == "Nov 2"


class TestWeatherRules:
    def test_heavy_rain_is_critical(self):
        days = _days()
        days[0] = make_day(days[0]["date"], totalprecip_mm=62.0, daily_chance_of_rain=95.0)
        alerts = generate_smart_alerts(make_forecast(days), [], today=TODAY)

        heavy = [a for a in alerts if a.id == "heavy-rain-2026-10-19"]
        assert len(heavy) == 1
        assert heavy[0].priority == "critical"
        assert heavy[0].title == "Heavy Rain Alert - Today"
        assert "62mm" in heavy[0].description
        # heavy rain replaces the ordinary rain alert for the same day
        assert not any(a.id == "rain-2026-10-19" for a in alerts)

    def test_rain_expected_medium_priority(self):
        days = _days()
        days[1] = make_day(days[1]["date"], totalprecip_mm=10.0, daily_chance_of_rain=80.0)
        alerts = generate_smart_alerts(make_forecast(days), [{"crop_name": "Wheat", "crop_id": 1}], today=TODAY)

        rain = next(a for a in alerts if a.id == "rain-2026-10-20")
        assert rain.title == "Rain Expected Tomorrow"
        assert rain.priority == "medium"
        assert rain.description == "80% chance of rain tomorrow (10mm expected). Partly cloudy."
        assert rain.affected_crops == ["Wheat"]

    def test_heavy_enough_rain_is_high(self):
        days = _days()
        days[2] = make_day(days[2]["date"], totalprecip_mm=25.0, daily_chance_of_rain=90.0)
        alerts = generate_smart_alerts(make_forecast(days), [], today=TODAY)
        assert next(a for a in alerts if a.id.startswith("rain-")).priority == "high"

    def test_temperature_and_wind_thresholds(self):
        days = _days()
        days[0] = make_day(days[0]["date"], maxtemp_c=42.0)
        days[1] = make_day(days[1]["date"], maxtemp_c=37.0)
        days[2] = make_day(days[2]["date"], mintemp_c=4.0)
        days[3] = make_day(days[3]["date"], maxwind_kph=45.0)
        alerts = {a.id: a for a in generate_smart_alerts(make_forecast(days), [], today=TODAY)}

        assert alerts["heat-2026-10-19"].priority == "critical"
        assert alerts["heat-2026-10-20"].priority == "high"
        assert alerts["cold-2026-10-21"].priority == "critical"
        assert alerts["cold-2026-10-21"].description == "Minimum temperature: 4°C. Risk of frost damage."
        assert alerts["wind-2026-10-22"].priority == "high"

    def test_uv_only_checked_for_first_two_days(self):
        days = _days(uv=9.5)
        alerts = generate_smart_alerts(make_forecast(days), [], today=TODAY)
        uv_ids = [a.id for a in alerts if a.id.startswith("uv-")]
        assert uv_ids == ["uv-2026-10-19", "uv-2026-10-20"]

    def test_disease_risk_needs_humidity_and_recent_disease(self):
        days = _days()
        days[0] = make_day(days[0]["date"], avghumidity=88.0)
        recent = [{"disease_name": "leaf blight", "severity": "moderate"}]

        with_disease = generate_smart_alerts(make_forecast(days), [], recent_diseases=recent, today=TODAY)
        without = generate_smart_alerts(make_forecast(days), [], recent_diseases=[], today=TODAY)

        risk = next(a for a in with_disease if a.type == "disease")
        assert risk.id == "disease-risk-2026-10-19"
        assert risk.action_required.startswith("Monitor for leaf blight.")
        assert not any(a.type == "disease" for a in without)


class TestFarmRules:
    def test_irrigation_after_dry_spell(self):
        days = _days(daily_chance_of_rain=5.0, totalprecip_mm=0.0)
        soil = {"sand_pct": 70, "total_nitrogen": 0.2, "organic_carbon": 12}
        alerts = generate_smart_alerts(make_forecast(days), [], soil=soil, today=TODAY)

        irrigation = next(a for a in alerts if a.id == "irrigation-needed")
        assert "fast-draining" in irrigation.description
        assert irrigation.action_required.endswith("Water deeply and frequently.")
        assert irrigation.date == "2026-10-19"

    def test_drainage_speed(self):
        assert drainage_speed(65) == "fast"
        assert drainage_speed(45) == "moderate"
        assert drainage_speed(20) == "slow"

    def test_fertilizer_alert_on_poor_soil(self):
        soil = {"total_nitrogen": 0.05, "organic_carbon": 3.0, "sand_pct": 30, "ph_level": 6.8}
        alerts = generate_smart_alerts(make_forecast(_days()), [], soil=soil, today=TODAY)

        fert = next(a for a in alerts if a.id == "fertilizer-alert")
        assert fert.priority == "high"
        assert fert.description == (
            "Low soil nutrients detected. Nitrogen: 50.0 g/kg, Organic Carbon: 3.0 g/kg."
        )

    def test_harvest_window(self):
        crops = [
            {"crop_id": 1, "crop_name": "Tomato", "expected_harvest_date": (TODAY + timedelta(days=5)).isoformat()},
            {"crop_id": 2, "crop_name": "Onion", "expected_harvest_date": (TODAY + timedelta(days=12)).isoformat()},
            {"crop_id": 3, "crop_name": "Wheat", "expected_harvest_date": (TODAY + timedelta(days=40)).isoformat()},
        ]
        alerts = {a.id: a for a in generate_smart_alerts(make_forecast(_days()), crops, today=TODAY)}

        assert alerts["harvest-1"].priority == "high"
        assert alerts["harvest-1"].description == "Expected harvest in 5 days (Oct 24)."
        assert alerts["harvest-2"].priority == "medium"
        assert "harvest-3" not in alerts


class TestFillersAndOrdering:
    def test_quiet_week_gets_filler_alerts(self):
        alerts = generate_smart_alerts(make_forecast(_days()), [], today=TODAY)
        ids = [a.id for a in alerts]
        assert ids == ["weather-summary", "optimal-conditions", "weekly-planning"]
        assert all(a.priority == "low" for a in alerts)
        assert alerts[0].description == "Current: 23°C, Partly cloudy. Tomorrow: 23°C, Partly cloudy."

    def test_fillers_include_soil_and_crop_checks(self):
        crops = [{"crop_id": 9, "crop_name": "Maize"}]
        soil = {"ph_level": 5.4, "total_nitrogen": 0.3, "organic_carbon": 15}
        alerts = generate_smart_alerts(make_forecast(_days()), crops, soil=soil, today=TODAY)

        ids = [a.id for a in alerts]
        assert ids == ["weather-summary", "soil-monitoring", "crop-monitoring", "optimal-conditions"]
        soil_alert = alerts[1]
        assert soil_alert.description.startswith("Soil pH: 5.4 (acidic)")
        assert alerts[2].type == "pest"

    def test_sorted_by_priority_and_capped(self):
        days = _days(maxtemp_c=43.0)
        days[0] = make_day(days[0]["date"], maxtemp_c=43.0, uv=10.0)
        alerts = generate_smart_alerts(make_forecast(days), [], today=TODAY)

        assert len(alerts) == MAX_ALERTS
        assert all(a.priority == "critical" for a in alerts)

    def test_mixed_priorities_are_ordered(self):
        days = _days()
        days[0] = make_day(days[0]["date"], maxtemp_c=36.0, uv=9.0)
        days[1] = make_day(days[1]["date"], maxwind_kph=65.0)
        alerts = generate_smart_alerts(make_forecast(days), [], today=TODAY)
        assert [a.priority for a in alerts] == ["critical", "high", "low"]
