# tests/test_middleware.py
"""Tests for fleetdesk/transport middleware, security helpers and config checks."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from fleetdesk.config import Settings, warn_on_risky_config
from fleetdesk.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from fleetdesk.transport.security import sanitize_error_message


def _build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    def test_endpoint():
        return {"ok": True}

    return app


class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        resp = TestClient(_build_app()).get("/test")
        assert resp.status_code == 200
        assert len(resp.headers["X-Request-ID"]) >= 32

    def test_preserves_existing_request_id(self):
        resp = TestClient(_build_app()).get("/test", headers={"X-Request-ID": "trace-42"})
        assert resp.headers["X-Request-ID"] == "trace-42"


class TestSecurityHeaders:
    def test_headers_present(self):
        resp = TestClient(_build_app()).get("/test")
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert "no-store" in resp.headers["Cache-Control"]
        assert "Strict-Transport-Security" not in resp.headers


class TestSanitizeErrorMessage:
    def test_dev_shows_detail(self):
        assert sanitize_error_message(ValueError("bad plate"), is_production=False) == "bad plate"

    def test_prod_hides_detail(self):
        assert sanitize_error_message(ValueError("bad plate"), is_production=True) == "Invalid input"
        assert sanitize_error_message(RuntimeError("db dsn leaked"), is_production=True) == "An error occurred"


class TestConfigChecks:
    def test_prod_requires_admin_token(self):
        s = Settings(app_env="prod", admin_token=None, identity_signing_key=None, store_backend="memory")
        missing = s.validate_required_for_production()
        assert "admin_token" in missing

    def test_prod_postgres_requires_database_url(self):
        s = Settings(app_env="prod", admin_token="t" * 32, store_backend="postgres", database_url=None)
        assert s.validate_required_for_production() == ["database_url"]

    def test_dev_has_no_required_fields(self):
        assert Settings(app_env="dev", admin_token=None).validate_required_for_production() == []

    def test_signing_key_falls_back_to_admin_token(self):
        s = Settings(admin_token="admin-token", identity_signing_key=None)
        assert s.effective_signing_key == "admin-token"

    def test_risky_prod_memory_store(self):
        s = Settings(app_env="prod", admin_token="t" * 32, store_backend="memory")
        assert any("store_backend=memory" in w for w in warn_on_risky_config(s))
