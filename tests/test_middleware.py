import logging

import pytest
from httpx import ASGITransport, AsyncClient

from videorelay.config import settings
from videorelay.core import rate_limit
from videorelay.core.logging_config import REDACTED, SensitiveDataFilter, redact
from videorelay.core.middleware import user_digest
from videorelay.main import app


@pytest.mark.asyncio
async def test_request_id_in_response():
    """All responses include X-Request-ID header."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert "X-Request-ID" in response.headers
    # UUID format: 8-4-4-4-12
    request_id = response.headers["X-Request-ID"]
    assert len(request_id) == 36


@pytest.mark.asyncio
async def test_incoming_request_id_is_echoed():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health", headers={"X-Request-ID": "trace-abc"})
    assert response.headers["X-Request-ID"] == "trace-abc"


@pytest.mark.asyncio
async def test_404_returns_structured_json():
    """Non-existent endpoint returns structured JSON error with request_id."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/nonexistent")
    assert response.status_code == 404
    data = response.json()
    assert data["error"] == "Not Found"
    assert data["statusCode"] == 404
    assert "request_id" in data


@pytest.mark.asyncio
async def test_login_rate_limited_in_production(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")
    monkeypatch.setattr(rate_limit, "_ip_counter", rate_limit.SlidingWindowCounter())

    body = {"email": "nobody@example.com", "password": "Wrong1234!"}
    for _ in range(5):
        response = await client.post("/api/auth/login", json=body)
        assert response.status_code == 401

    response = await client.post("/api/auth/login", json=body)
    assert response.status_code == 429
    data = response.json()
    assert data["statusCode"] == 429
    assert data["retryAfter"] == 3600
    assert response.headers["Retry-After"] == "3600"


@pytest.mark.asyncio
async def test_no_rate_limit_outside_production(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(rate_limit, "_ip_counter", rate_limit.SlidingWindowCounter())
    body = {"email": "nobody@example.com", "password": "Wrong1234!"}
    for _ in range(7):
        response = await client.post("/api/auth/login", json=body)
        assert response.status_code == 401


def test_sliding_window_counter():
    counter = rate_limit.SlidingWindowCounter()
    assert counter.is_allowed("k", 2, 60)
    assert counter.is_allowed("k", 2, 60)
    assert not counter.is_allowed("k", 2, 60)
    assert counter.is_allowed("other", 2, 60)


def test_redact_masks_credentials():
    payload = {"accessKey": "a", "secret_key": "s", "nested": {"password": "p"}, "title": "t"}
    assert redact(payload) == {
        "accessKey": REDACTED,
        "secret_key": REDACTED,
        "nested": {"password": REDACTED},
        "title": "t",
    }


def test_sensitive_filter_masks_log_args():
    record = logging.LogRecord(
        "videorelay.test", logging.INFO, __file__, 1, "saving %s", ({"access_key": "ak"},), None
    )
    assert SensitiveDataFilter().filter(record) is True
    assert record.getMessage() == f"saving {{'access_key': '{REDACTED}'}}"


@pytest.mark.asyncio
async def test_security_headers_on_every_response():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        ok = await client.get("/health")
        missing = await client.get("/nonexistent")
    for response in (ok, missing):
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]
        assert "Strict-Transport-Security" not in response.headers


@pytest.mark.asyncio
async def test_hsts_only_in_production(monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
    assert response.headers["Strict-Transport-Security"] == "max-age=31536000; includeSubDomains"


@pytest.mark.asyncio
async def test_access_log_hashes_user_id(client: AsyncClient, auth_headers: dict, caplog):
    with caplog.at_level(logging.INFO, logger="videorelay.access"):
        response = await client.get("/api/auth/me", headers=auth_headers)
    assert response.status_code == 200
    user_id = response.json()["id"]

    [line] = [r.getMessage() for r in caplog.records if "path=/api/auth/me" in r.getMessage()]
    assert f"user={user_digest(user_id)}" in line
    assert user_id not in line
    assert "status=200" in line
