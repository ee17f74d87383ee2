import time
from unittest.mock import MagicMock

import jwt
import pytest
from fastapi.testclient import TestClient

from fasalsetu import auth
from fasalsetu.main import app, get_public_db

SECRET = "test-jwt-secret"


def _token(sub="user-1", aud="authenticated", secret=SECRET, **extra):
    claims = {"sub": sub, "aud": aud, "phone": "919876543210", "exp": int(time.time()) + 3600}
    claims.update(extra)
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", SECRET)


class TestFormatPhone:
    @pytest.mark.parametrize("raw", ["9876543210", "+91 98765 43210", "919876543210", "09876543210", "98765-43210"])
    def test_normalises(self, raw):
        assert auth.format_phone(raw) == "+919876543210"

    @pytest.mark.parametrize("raw", ["", "12345", "+1 555 123 4567", "98765abcde"])
    def test_rejects(self, raw):
        with pytest.raises(ValueError):
            auth.format_phone(raw)


class TestAccessToken:
    def test_valid_token(self, jwt_secret):
        claims = auth.decode_access_token(_token())
        assert claims["sub"] == "user-1"

    def test_wrong_audience_or_secret(self, jwt_secret):
        assert auth.decode_access_token(_token(aud="anon")) is None
        assert auth.decode_access_token(_token(secret="other")) is None

    def test_expired(self, jwt_secret):
        assert auth.decode_access_token(_token(exp=int(time.time()) - 10)) is None

    def test_no_secret_configured(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_JWT_SECRET", raising=False)
        assert auth.decode_access_token(_token()) is None

    def test_current_user_from_header(self, jwt_secret):
        token = _token()
        user = auth.current_user(f"Bearer {token}")
        assert user.id == "user-1"
        assert user.token == token

class TestSendOtp:
    def test_sends_e164_phone_over_sms(self):
        client = MagicMock()
        assert auth.send_otp(client, "98765 43210") == "+919876543210"
        client.auth.sign_in_with_otp.assert_called_once_with(
            {"phone": "+919876543210", "options": {"channel": "sms"}}
        )

    def test_bad_phone_never_reaches_provider(self):
        client = MagicMock()
        with pytest.raises(ValueError):
            auth.send_otp(client, "12345")
        client.auth.sign_in_with_otp.assert_not_called()



class TestVerifyOtp:
    def test_rejects_malformed_code(self):
        with pytest.raises(ValueError):
            auth.verify_otp(MagicMock(), "9876543210", "12ab")

    def test_failed_verification(self):
        client = MagicMock()
        client.auth.verify_otp.return_value = MagicMock(user=None, session=None)
        with pytest.raises(PermissionError):
            auth.verify_otp(client, "9876543210", "123456")

    def test_success_returns_session_and_creates_profile(self, fake_db):
        fake_db.auth = MagicMock()
        fake_db.auth.verify_otp.return_value = MagicMock(
            user=MagicMock(id="new-user"),
            session=MagicMock(access_token="access-1", refresh_token="refresh-1", expires_in=3600),
        )

        result = auth.verify_otp(fake_db, "9876543210", " 123456 ")

        fake_db.auth.verify_otp.assert_called_once_with({"phone": "+919876543210", "token": "123456", "type": "sms"})
        assert result == {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "user": {"id": "new-user", "phone": "+919876543210"},
        }
        assert fake_db.rows("users") == [{"id": "new-user", "phone": "+919876543210", "preferred_language": "en"}]

    def test_existing_profile_is_kept(self, fake_db):
        fake_db.rows("users").append({"id": "old-user", "phone": "+919876543210", "preferred_language": "hi"})
        fake_db.auth = MagicMock()
        fake_db.auth.verify_otp.return_value = MagicMock(user=MagicMock(id="old-user"), session=MagicMock())

        auth.verify_otp(fake_db, "9876543210", "123456")

        assert fake_db.rows("users") == [{"id": "old-user", "phone": "+919876543210", "preferred_language": "hi"}]


class TestProtectedRoutes:
    def test_missing_token_is_401(self, jwt_secret):
        with TestClient(app) as c:
            assert c.get("/api/crops").status_code == 401
            assert c.get("/api/crops", headers={"Authorization": "Bearer nonsense"}).status_code == 401

    def test_healthz_is_public(self):
        with TestClient(app) as c:
            assert c.get("/healthz").json()["status"] == "ok"


class TestAuthRoutes:
    @pytest.fixture
    def public_client(self, fake_db):
        fake_db.auth = MagicMock()
        app.dependency_overrides[get_public_db] = lambda: fake_db
        with TestClient(app) as c:
            yield c
        app.dependency_overrides.clear()

    def test_otp_sent(self, public_client):
        assert public_client.post("/api/auth/otp", json={"phone": "9876543210"}).json() == {
            "phone": "+919876543210", "sent": True,
        }

    def test_otp_bad_phone_is_400(self, public_client):
        assert public_client.post("/api/auth/otp", json={"phone": "12345"}).status_code == 400

    def test_otp_provider_failure_is_502(self, public_client, fake_db):
        fake_db.auth.sign_in_with_otp.side_effect = RuntimeError("sms provider down")
        resp = public_client.post("/api/auth/otp", json={"phone": "9876543210"})
        assert resp.status_code == 502
        assert "sms provider down" in resp.json()["detail"]

    def test_verify_success(self, public_client, fake_db):
        fake_db.auth.verify_otp.return_value = MagicMock(
            user=MagicMock(id="new-user"),
            session=MagicMock(access_token="access-1", refresh_token="refresh-1", expires_in=3600),
        )
        body = public_client.post("/api/auth/verify", json={"phone": "9876543210", "otp": "123456"}).json()
        assert body["access_token"] == "access-1"
        assert body["user"] == {"id": "new-user", "phone": "+919876543210"}

    def test_verify_provider_error_is_401(self, public_client, fake_db):
        fake_db.auth.verify_otp.side_effect = RuntimeError("Token has expired or is invalid")
        resp = public_client.post("/api/auth/verify", json={"phone": "9876543210", "otp": "123456"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid OTP"

    def test_verify_rejected_code_is_401(self, public_client, fake_db):
        fake_db.auth.verify_otp.return_value = MagicMock(user=None, session=None)
        assert public_client.post("/api/auth/verify", json={"phone": "9876543210", "otp": "123456"}).status_code == 401

    def test_verify_malformed_code_is_400(self, public_client):
        assert public_client.post("/api/auth/verify", json={"phone": "9876543210", "otp": "12"}).status_code == 400
