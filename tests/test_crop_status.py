from datetime import timedelta

from fasalsetu.db import disease_logs, to_iso, utcnow
from fasalsetu.services.crop_status import classify_status, crop_status


class TestClassifyStatus:
    def test_no_logs_is_healthy(self):
        assert classify_status([]) == "healthy"

    def test_two_logs_are_critical(self):
        logs = [{"severity": "mild"}, {"severity": "mild"}]
        assert classify_status(logs) == "critical"

    def test_single_log_by_severity(self):
        assert classify_status([{"severity": "severe"}]) == "critical"
        assert classify_status([{"severity": "moderate"}]) == "attention"
        assert classify_status([{"severity": "mild"}]) == "attention"
        assert classify_status([{"severity": "unknown"}]) == "healthy"

    def test_recent_manual_status_wins(self):
        now = utcnow()
        logs = [{"severity": "severe"}, {"severity": "severe"}]
        updated = to_iso(now - timedelta(days=2))
        assert classify_status(logs, "healthy", updated, now) == "healthy"

    def test_old_manual_status_is_ignored(self):
        now = utcnow()
        updated = to_iso(now - timedelta(days=10))
        assert classify_status([{"severity": "severe"}], "healthy", updated, now) == "critical"

    def test_manual_status_without_timestamp_is_ignored(self):
        assert classify_status([], "critical", None) == "healthy"


class TestCropStatus:
    def test_reads_logs_for_the_crop(self, fake_db):
        disease_logs.save_disease_log(fake_db, "u1", "Leaf Blight", "moderate", crop_cycle_id=7)
        disease_logs.save_disease_log(fake_db, "u1", "Rust", "severe", crop_cycle_id=8)

        assert crop_status(fake_db, "u1", {"crop_id": 7, "crop_name": "Wheat"}) == "attention"
        assert crop_status(fake_db, "u1", {"crop_id": 8, "crop_name": "Rice"}) == "critical"
        assert crop_status(fake_db, "u1", {"crop_id": 9, "crop_name": "Maize"}) == "healthy"

    def test_other_users_logs_are_ignored(self, fake_db):
        disease_logs.save_disease_log(fake_db, "u2", "Rust", "severe", crop_cycle_id=7)
        disease_logs.save_disease_log(fake_db, "u2", "Rust", "severe", crop_cycle_id=7)

        assert crop_status(fake_db, "u1", {"crop_id": 7, "crop_name": "Wheat"}) == "healthy"
        assert crop_status(fake_db, "u2", {"crop_id": 7, "crop_name": "Wheat"}) == "critical"

    def test_old_logs_fall_outside_window(self, fake_db):
        fake_db.rows("disease_logs").append({
            "user_id": "u1",
            "crop_cycle_id": 7,
            "severity": "severe",
            "detection_date": to_iso(utcnow() - timedelta(days=45)),
        })
        assert crop_status(fake_db, "u1", {"crop_id": 7}) == "healthy"

    def test_lookup_failure_reports_healthy(self, fake_db):
        fake_db.fail_tables.add("disease_logs")
        assert crop_status(fake_db, "u1", {"crop_id": 7, "crop_name": "Wheat"}) == "healthy"
