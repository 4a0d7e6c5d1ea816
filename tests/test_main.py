"""
tests/test_main.py
App shell: health, request ids, rate limiting and error bodies.
"""

import json
import logging

import pytest
from httpx import AsyncClient

import config.database as database_module
from config.settings import settings
from shared.models.models import User
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_health_ok(client: AsyncClient, session_factory, monkeypatch):
    monkeypatch.setattr(database_module, "AsyncSessionLocal", session_factory)
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok", "version": settings.APP_VERSION, "database": "ok", "redis": "ok",
    }


@pytest.mark.asyncio
async def test_health_degraded_without_redis(client: AsyncClient, session_factory, monkeypatch):
    import config.redis_client as redis_module

    monkeypatch.setattr(database_module, "AsyncSessionLocal", session_factory)
    monkeypatch.setattr(redis_module, "redis_client", None)
    response = await client.get("/health")
    assert response.status_code == 503
    assert response.json()["redis"] == "error"
    assert response.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["name"] == settings.APP_NAME


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Process-Time"].endswith("ms")

    generated = await client.get("/")
    assert len(generated.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_error_body_carries_request_id(client: AsyncClient, artist: User):
    response = await client.post(
        "/wallet/withdraw", headers={**auth_headers(artist), "X-Request-ID": "req-402"}, json={"amount": "5"}
    )
    assert response.status_code == 402
    assert response.json()["request_id"] == "req-402"
    assert response.json()["code"] == "INSUFFICIENT_FUNDS"


@pytest.mark.asyncio
async def test_unauthenticated_rate_limit(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_UNAUTH_PER_MINUTE", 2)

    codes = [(await client.get("/stoodioz")).status_code for _ in range(3)]
    assert codes == [200, 200, 429]

    limited = await client.get("/stoodioz")
    assert limited.json()["code"] == "RATE_LIMITED"
    assert limited.headers["Retry-After"] == "60"

    # Health checks are never limited
    assert (await client.get("/health")).status_code != 429


@pytest.mark.asyncio
async def test_authenticated_requests_skip_rate_limit(client: AsyncClient, artist: User, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_UNAUTH_PER_MINUTE", 1)
    codes = [(await client.get("/users/me", headers=auth_headers(artist))).status_code for _ in range(3)]
    assert codes == [200, 200, 200]


class _Collector(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.mark.asyncio
async def test_log_records_carry_request_id(client: AsyncClient, artist: User):
    from main import JSONFormatter, RequestIdFilter, request_id_ctx

    collector = _Collector()
    collector.addFilter(RequestIdFilter())
    root = logging.getLogger()
    root.addHandler(collector)
    try:
        await client.post(
            "/wallet/withdraw", headers={**auth_headers(artist), "X-Request-ID": "req-log-1"}, json={"amount": "5"}
        )
    finally:
        root.removeHandler(collector)

    record = next(r for r in collector.records if "INSUFFICIENT_FUNDS" in r.getMessage())
    assert record.request_id == "req-log-1"
    assert json.loads(JSONFormatter().format(record))["request_id"] == "req-log-1"

    # Nothing leaks past the request
    assert request_id_ctx.get() is None


def test_records_outside_a_request_have_no_request_id():
    from main import JSONFormatter, RequestIdFilter

    record = logging.LogRecord("stoodioz", logging.INFO, __file__, 1, "booting", None, None)
    assert RequestIdFilter().filter(record) is True
    assert "request_id" not in json.loads(JSONFormatter().format(record))
