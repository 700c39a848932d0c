import time

import pytest
from fastapi.testclient import TestClient

from docvault.dependencies import get_services
from docvault.main import app, build_services
from docvault.services.member_service import MemberService


class TestHealth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"


class TestRegister:
    def test_register_member(self, client):
        r = client.post("/api/v1/auth/register", json={"email": "Ana@Example.org", "password": "correct-horse"})
        assert r.status_code == 201
        data = r.json()
        assert data["email"] == "ana@example.org"
        assert data["role"] == "member"

    def test_register_rejects_duplicate_email(self, client):
        client.post("/api/v1/auth/register", json={"email": "ana@example.org", "password": "correct-horse"})
        r = client.post("/api/v1/auth/register", json={"email": "ANA@example.org", "password": "another-pass"})
        assert r.status_code == 409

    def test_register_rejects_short_password(self, client):
        r = client.post("/api/v1/auth/register", json={"email": "ana@example.org", "password": "short"})
        assert r.status_code == 422


class TestLoginLogout:
    def _register(self, client, email="ana@example.org", password="correct-horse"):
        client.post("/api/v1/auth/register", json={"email": email, "password": password})

    def _auth(self, token):
        return {"Authorization": f"Bearer {token}"}

    def test_login_and_me(self, client):
        self._register(client)
        r = client.post("/api/v1/auth/login", json={"email": "ana@example.org", "password": "correct-horse"})
        assert r.status_code == 200
        token = r.json()["token"]
        assert r.json()["expires_in_seconds"] == 3600

        r = client.get("/api/v1/auth/me", headers=self._auth(token))
        assert r.status_code == 200
        assert r.json()["role"] == "member"

    def test_wrong_password(self, client):
        self._register(client)
        r = client.post("/api/v1/auth/login", json={"email": "ana@example.org", "password": "wrong-password"})
        assert r.status_code == 401

    def test_logout_invalidates_token(self, client):
        self._register(client)
        token = client.post("/api/v1/auth/login", json={
            "email": "ana@example.org", "password": "correct-horse",
        }).json()["token"]

        r = client.post("/api/v1/auth/logout", headers=self._auth(token))
        assert r.status_code == 200
        r = client.get("/api/v1/auth/me", headers=self._auth(token))
        assert r.status_code == 401

    def test_missing_bearer_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401
        r = client.get("/api/v1/auth/me", headers={"Authorization": "Basic abc"})
        assert r.status_code == 401

    def test_repeated_failures_are_throttled(self, client):
        self._register(client)
        for _ in range(3):
            r = client.post("/api/v1/auth/login", json={"email": "ana@example.org", "password": "wrong-password"})
            assert r.status_code == 401

        r = client.post("/api/v1/auth/login", json={"email": "ana@example.org", "password": "correct-horse"})
        assert r.status_code == 429
        assert r.json()["detail"]["error"] == "too_many_attempts"


class TestMemberService:
    def test_expired_token_is_rejected(self, services):
        members = MemberService(services.session_factory, token_ttl_seconds=0)
        members.register("bo@example.org", "correct-horse")
        result = members.login("bo@example.org", "correct-horse", throttle_key="test")
        time.sleep(0.01)
        assert members.validate_token(result["token"]) is None

    def test_admin_role(self, services):
        services.members.register("admin@example.org", "correct-horse", role="admin")
        result = services.members.login("admin@example.org", "correct-horse", throttle_key="test")
        caller = services.members.validate_token(result["token"])
        assert caller.is_admin


class TestBootstrapAdmin:
    def _settings(self, test_settings, **overrides):
        return test_settings.model_copy(update=overrides)

    def _login(self, members, email, password):
        result = members.login(email, password, throttle_key="test")
        return members.validate_token(result["token"])

    def test_ensure_admin_creates_account(self, services):
        services.members.ensure_admin("Root@Example.org", "correct-horse")
        caller = self._login(services.members, "root@example.org", "correct-horse")
        assert caller.is_admin

    def test_ensure_admin_promotes_existing_member(self, services):
        services.members.register("ana@example.org", "correct-horse")
        member = services.members.ensure_admin("ana@example.org", "ignored-password")
        assert member.role == "admin"

        caller = self._login(services.members, "ana@example.org", "correct-horse")
        assert caller.is_admin

    def test_ensure_admin_is_idempotent(self, services):
        first = services.members.ensure_admin("root@example.org", "correct-horse")
        second = services.members.ensure_admin("root@example.org", "correct-horse")
        assert first.id == second.id

    def test_build_services_creates_bootstrap_admin(self, test_settings, test_db, s3_client):
        config = self._settings(test_settings, bootstrap_admin_email="root@example.org",
                                bootstrap_admin_password="correct-horse")
        services = build_services(config, s3_client=s3_client)
        caller = self._login(services.members, "root@example.org", "correct-horse")
        assert caller.is_admin

    def test_bootstrap_admin_reaches_admin_routes(self, test_settings, test_db, s3_client):
        config = self._settings(test_settings, bootstrap_admin_email="root@example.org",
                                bootstrap_admin_password="correct-horse")
        services = build_services(config, s3_client=s3_client)
        app.dependency_overrides[get_services] = lambda: services
        try:
            client = TestClient(app)
            token = client.post("/api/v1/auth/login", json={
                "email": "root@example.org", "password": "correct-horse",
            }).json()["token"]
            r = client.post("/api/v1/categories", json={"name": "Newsletters"},
                            headers={"Authorization": f"Bearer {token}"})
            assert r.status_code == 201
        finally:
            app.dependency_overrides.clear()

    def test_bootstrap_admin_requires_password(self, test_settings, test_db, s3_client):
        config = self._settings(test_settings, bootstrap_admin_email="root@example.org")
        with pytest.raises(ValueError, match="BOOTSTRAP_ADMIN_PASSWORD"):
            build_services(config, s3_client=s3_client)
