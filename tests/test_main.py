from __future__ import annotations

import base64
import time

from fastapi.testclient import TestClient
import pytest

from app.config import DEVELOPMENT, Settings, get_settings
from app.gating import get_rate_limiter
from app.rate_limit import RateLimiter, RateLimitStore, build_policies
from main import app

ORIGIN = "http://localhost:3000"


def basic(value: str) -> dict:
    token = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        admin_password="correct-pw",
        seed_secret_token="seed-token-123",
        cors_allowed_origins=(ORIGIN,),
    )


@pytest.fixture()
def api_client(settings):
    limiter = RateLimiter.from_settings(settings, RateLimitStore())
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    client = TestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_settings, None)
        app.dependency_overrides.pop(get_rate_limiter, None)


def test_health_is_open_and_carries_cors(api_client):
    response = api_client.get("/api/health", headers={"Origin": ORIGIN})

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["Access-Control-Allow-Origin"] == ORIGIN


def test_default_policy_rejects_sixty_first_call(api_client):
    headers = {"X-Forwarded-For": "1.2.3.4"}
    statuses = [api_client.get("/api/health", headers=headers).status_code for _ in range(60)]

    response = api_client.get("/api/health", headers=headers)

    assert statuses == [200] * 60
    assert response.status_code == 429
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert response.headers["X-RateLimit-Limit"] == "60"
    assert int(response.headers["Retry-After"]) == response.json()["retryAfter"]
    assert response.json()["error"] == "Too many requests"
    assert "Access-Control-Allow-Origin" in response.headers


def test_rate_limit_is_per_client(api_client):
    for _ in range(60):
        api_client.get("/api/health", headers={"X-Forwarded-For": "1.2.3.4"})

    response = api_client.get("/api/health", headers={"X-Forwarded-For": "5.6.7.8"})

    assert response.status_code == 200


def test_admin_init_requires_credentials(api_client):
    response = api_client.post("/api/admin/init")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == 'Basic realm="Admin Area"'
    assert response.json() == {"error": "Authentication required"}


def test_admin_init_with_valid_credentials(api_client):
    response = api_client.post("/api/admin/init", headers=basic("admin:correct-pw"))

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_admin_init_with_wrong_password(api_client):
    response = api_client.post("/api/admin/init", headers=basic("admin:wrong-pw"))

    assert response.status_code == 401
    assert "WWW-Authenticate" in response.headers


def test_admin_init_strict_limit_applies_before_auth(api_client):
    headers = {"X-Forwarded-For": "1.2.3.4", **basic("admin:wrong-pw")}
    statuses = [api_client.post("/api/admin/init", headers=headers).status_code for _ in range(11)]

    assert statuses[:10] == [401] * 10
    assert statuses[10] == 429


def test_admin_init_unconfigured_returns_503(api_client):
    app.dependency_overrides[get_settings] = lambda: Settings()

    response = api_client.post("/api/admin/init", headers=basic("admin:correct-pw"))

    assert response.status_code == 503
    assert response.json() == {"error": "Admin authentication not configured"}


def test_admin_init_open_in_development_without_password(api_client):
    app.dependency_overrides[get_settings] = lambda: Settings(environment=DEVELOPMENT)

    response = api_client.post("/api/admin/init")

    assert response.status_code == 200


def test_seed_with_token(api_client):
    response = api_client.post(
        "/api/seed?force=true", headers={"Authorization": "Bearer seed-token-123"}
    )

    assert response.status_code == 202
    assert response.json()["force"] is True


def test_seed_with_wrong_token(api_client):
    response = api_client.post("/api/seed", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert "WWW-Authenticate" not in response.headers


def test_seed_disabled_without_token(api_client):
    app.dependency_overrides[get_settings] = lambda: Settings(environment=DEVELOPMENT)

    response = api_client.post("/api/seed", headers={"Authorization": "Bearer anything"})

    assert response.status_code == 503
    assert response.json()["error"] == "Seed endpoint disabled"


def test_check_env_reports_flags_only(api_client, settings):
    response = api_client.get("/api/check-env")

    assert response.status_code == 200
    data = response.json()
    assert data["adminAuth"] == {"configured": True}
    assert settings.admin_password not in response.text


def test_check_env_requires_api_key_when_configured(api_client):
    app.dependency_overrides[get_settings] = lambda: Settings(api_secret_key="k-1")

    assert api_client.get("/api/check-env").status_code == 401
    assert api_client.get("/api/check-env", headers={"X-API-Key": "k-1"}).status_code == 200


def test_preflight_returns_cors_headers_only(api_client):
    response = api_client.options(
        "/api/admin/slides",
        headers={"Origin": ORIGIN, "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 200
    assert response.content == b""
    assert "POST" in response.headers["Access-Control-Allow-Methods"]
    assert response.headers["Access-Control-Allow-Origin"] == ORIGIN
    assert response.headers["Access-Control-Max-Age"] == "86400"


def test_lifespan_initialises_and_tears_down_store(settings):
    limiter = RateLimiter.from_settings(settings, RateLimitStore())
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    try:
        with TestClient(app) as client:
            client.get("/api/health", headers={"X-Forwarded-For": "9.9.9.9"})
            assert len(limiter.store) == 1
        assert len(limiter.store) == 0
    finally:
        app.dependency_overrides.pop(get_settings, None)
        app.dependency_overrides.pop(get_rate_limiter, None)


def test_health_varies_on_echoed_origin(api_client):
    response = api_client.get("/api/health", headers={"Origin": ORIGIN})

    assert "Origin" in response.headers["Vary"]


def test_wildcard_origin_does_not_vary(api_client):
    response = api_client.get("/api/health", headers={"Origin": "https://other.example"})

    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "Origin" not in response.headers.get("Vary", "")


class FailingSweepLimiter(RateLimiter):
    def __init__(self, settings: Settings) -> None:
        super().__init__(RateLimitStore(), build_policies(settings))
        self.sweeps = 0

    def sweep(self) -> int:
        self.sweeps += 1
        raise RuntimeError("sweep failed")


def test_lifespan_survives_failing_sweep_and_tears_down():
    settings = Settings(rate_limit_sweep_interval_seconds=0.01)
    limiter = FailingSweepLimiter(settings)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    try:
        with TestClient(app) as client:
            client.get("/api/health", headers={"X-Forwarded-For": "9.9.9.9"})
            for _ in range(100):
                if limiter.sweeps >= 2:
                    break
                time.sleep(0.01)
            assert client.get("/api/health").status_code == 200
        assert limiter.sweeps >= 2
        assert len(limiter.store) == 0
    finally:
        app.dependency_overrides.pop(get_settings, None)
        app.dependency_overrides.pop(get_rate_limiter, None)
