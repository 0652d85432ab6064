import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from sre_demo.core.config import get_settings
from sre_demo.core.rate_limit import RateLimiter
from sre_demo.services.todo_service import TodoService


@pytest.fixture
def leak_mode(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "environment", "development")
    monkeypatch.setattr(settings, "chaos_missing_error_handling_enabled", True)
    return settings


@pytest.mark.asyncio
async def test_unknown_route(client):
    response = await client.get("/api/nope")

    assert response.status_code == 404
    assert response.json()["error"] == "Not Found"
    assert response.json()["message"] == "Cannot GET /api/nope"


@pytest.mark.asyncio
async def test_validation_error_shape(client):
    response = await client.post("/api/todos", json={"title": ""})

    body = response.json()
    assert response.status_code == 400
    assert body["error"].startswith("title: ")
    assert body["details"][0]["loc"] == ["title"]
    assert "stack" not in body


@pytest.mark.asyncio
async def test_unexpected_error_is_generic(client, monkeypatch):
    async def explode(*args, **kwargs):
        raise RuntimeError("connection string postgres://secret")

    monkeypatch.setattr(TodoService, "list_todos", explode)

    response = await client.get("/api/todos")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal Server Error"
    assert "secret" not in response.text


@pytest.mark.asyncio
async def test_leak_mode_exposes_internals(client, leak_mode):
    response = await client.post("/api/todos", json={"title": ""})

    body = response.json()
    assert response.status_code == 400
    assert body["database"] == leak_mode.database_url
    assert body["redis"] == leak_mode.redis_connection_string
    assert body["environment"] == "development"
    assert body["path"] == "/api/todos"
    assert body["body"] == {"title": ""}
    assert "RequestValidationError" in body["stack"]


@pytest.mark.asyncio
async def test_leak_mode_needs_development(client, leak_mode, monkeypatch):
    monkeypatch.setattr(leak_mode, "environment", "production")

    response = await client.get("/api/todos/999")

    assert response.status_code == 404
    assert "database" not in response.json()


def test_rate_limiter_counts_per_key():
    limiter = RateLimiter(window_ms=60_000, max_requests=2)

    assert limiter.hit("10.0.0.1")[0] == 1
    assert limiter.hit("10.0.0.1")[0] == 2
    assert limiter.hit("10.0.0.2")[0] == 1
    count, reset_in = limiter.hit("10.0.0.1")
    assert count == 3
    assert 0 < reset_in <= 60


@pytest.mark.asyncio
async def test_rate_limit_returns_429():
    app = FastAPI()
    app.middleware("http")(RateLimiter(window_ms=60_000, max_requests=2))

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        responses = [await ac.get("/ping") for _ in range(3)]

    assert [r.status_code for r in responses] == [200, 200, 429]
    assert responses[0].headers["RateLimit-Remaining"] == "1"
    assert responses[2].json()["error"] == "Too Many Requests"
    assert responses[2].json()["retry_after"] > 0
