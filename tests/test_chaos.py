import asyncio

import pytest

from sre_demo.services import chaos_service
from sre_demo.services.chaos_service import ChaosService, ChaosState, Scenario

from .conftest import BrokenRedis, FakeRedis


@pytest.fixture(autouse=True)
def small_leak_payload(monkeypatch):
    # Entry counts are what matter here, not megabytes
    monkeypatch.setattr(chaos_service, "LEAK_PAYLOAD", ["x"])


@pytest.mark.asyncio
async def test_initial_status(client):
    response = await client.get("/api/chaos/status")

    assert response.json() == {
        "scenarios": {
            "memory-leak": False,
            "cpu-spike": False,
            "db-timeout": False,
            "pool-exhaustion": False,
            "unhandled-promise": False,
        },
        "memory_leak_size": 0,
        "leaked_connections": 0,
    }


@pytest.mark.asyncio
async def test_memory_leak_requires_toggle(client):
    response = await client.post("/api/chaos/memory-leak/trigger")

    assert response.status_code == 400
    assert response.json()["error"] == "Memory leak scenario not enabled"


@pytest.mark.asyncio
async def test_memory_leak_grows_and_disable_releases(client, chaos_state):
    await client.post("/api/chaos/memory-leak/enable")

    first = await client.post("/api/chaos/memory-leak/trigger")
    second = await client.post("/api/chaos/memory-leak/trigger")

    assert first.json()["leaked_objects"] == 10_000
    assert second.json()["leaked_objects"] == 20_000
    assert second.json()["current_heap_used"].endswith(" MB")
    assert (await client.get("/api/chaos/status")).json()["memory_leak_size"] == 20_000

    response = await client.post("/api/chaos/memory-leak/disable")

    assert response.json()["state"]["memory_leak_size"] == 0
    assert response.json()["state"]["scenarios"]["memory-leak"] is False
    assert chaos_state.leak_store == []


@pytest.mark.asyncio
async def test_enable_and_disable_single_scenario(client):
    enabled = await client.post("/api/chaos/cpu-spike/enable")
    disabled = await client.post("/api/chaos/cpu-spike/disable")

    assert enabled.json()["message"] == "cpu-spike scenario enabled"
    assert enabled.json()["state"]["scenarios"]["cpu-spike"] is True
    assert disabled.json()["state"]["scenarios"]["cpu-spike"] is False


@pytest.mark.asyncio
async def test_unknown_scenario(client):
    response = await client.post("/api/chaos/disk-full/enable")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_enable_all_and_disable_all(client):
    enabled = await client.post("/api/chaos/enable-all")
    assert all(enabled.json()["state"]["scenarios"].values())

    await client.post("/api/chaos/memory-leak/trigger")
    disabled = await client.post("/api/chaos/disable-all")

    assert not any(disabled.json()["state"]["scenarios"].values())
    assert disabled.json()["state"]["memory_leak_size"] == 0


def test_toggles_are_idempotent():
    state = ChaosState()

    ChaosService.enable(state, Scenario.DB_TIMEOUT)
    ChaosService.enable(state, Scenario.DB_TIMEOUT)
    assert state.toggles[Scenario.DB_TIMEOUT] is True

    ChaosService.disable_all(state)
    ChaosService.disable_all(state)
    assert not any(state.toggles.values())


@pytest.mark.asyncio
async def test_seed_then_reset_only_removes_seeded(client):
    await client.post("/api/todos", json={"title": "Write postmortem"})
    await client.get("/api/todos")

    seeded = await client.post("/api/chaos/seed-data", json={"count": 50})
    after_seed = await client.get("/api/todos")

    assert seeded.json() == {"message": "Created 50 test todos", "count": 50}
    assert after_seed.json()["count"] == 51
    assert after_seed.headers["X-Cache"] == "MISS"

    await client.post("/api/chaos/enable-all")
    reset = await client.post("/api/chaos/reset")
    after_reset = await client.get("/api/todos")
    status = await client.get("/api/chaos/status")

    assert reset.json()["deleted_todos"] == 50
    assert reset.json()["chaos_disabled"] is True
    assert [t["title"] for t in after_reset.json()["todos"]] == ["Write postmortem"]
    assert not any(status.json()["scenarios"].values())


@pytest.mark.asyncio
async def test_seed_default_count(client):
    response = await client.post("/api/chaos/seed-data")

    assert response.json()["count"] == 100


@pytest.mark.asyncio
async def test_seed_rejects_bad_count(client):
    response = await client.post("/api/chaos/seed-data", json={"count": 0})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_cpu_spike(client):
    response = await client.post("/api/chaos/cpu-spike", params={"duration": 10})

    assert response.status_code == 200
    assert response.json()["duration"] == "10ms"


@pytest.mark.asyncio
async def test_db_timeout(client):
    response = await client.post("/api/chaos/db-timeout", params={"duration": 10})

    assert response.status_code == 200
    assert response.json()["message"] == "Long transaction completed"


@pytest.mark.asyncio
async def test_unobserved_failure_returns_immediately(client):
    response = await client.post("/api/chaos/unhandled-promise")

    assert response.status_code == 200
    assert response.json()["message"] == "Unobserved async failure triggered"
    # The failure surfaces later, on the event loop, not in this response
    await asyncio.sleep(chaos_service.UNOBSERVED_FAILURE_DELAY * 3)
    assert (await client.get("/api/health")).status_code == 200


@pytest.mark.asyncio
async def test_exhaust_pool_keeps_connections(client, chaos_state, monkeypatch):
    class StubRedis:
        @staticmethod
        def from_url(url, **kwargs):
            return FakeRedis()

    monkeypatch.setattr(chaos_service, "Redis", StubRedis)

    response = await client.post("/api/chaos/exhaust-pool")

    assert response.json()["connections_created"] == 50
    assert response.json()["total_leaked_connections"] == 50
    assert len(chaos_state.leaked_connections) == 50
    assert not any(conn.closed for conn in chaos_state.leaked_connections)


@pytest.mark.asyncio
async def test_exhaust_pool_failure(client, monkeypatch):
    class StubRedis:
        @staticmethod
        def from_url(url, **kwargs):
            return BrokenRedis()

    monkeypatch.setattr(chaos_service, "Redis", StubRedis)

    response = await client.post("/api/chaos/exhaust-pool")

    assert response.status_code == 500
    assert "Connection refused" in response.json()["error"]


@pytest.mark.asyncio
async def test_reset_drops_cached_seeded_items(client):
    await client.post("/api/chaos/seed-data", json={"count": 3})
    seeded = (await client.get("/api/todos")).json()["todos"][0]
    cached = await client.get(f"/api/todos/{seeded['id']}")
    assert (await client.get(f"/api/todos/{seeded['id']}")).headers["X-Cache"] == "HIT"

    await client.post("/api/chaos/reset")
    response = await client.get(f"/api/todos/{seeded['id']}")

    assert cached.status_code == 200
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_db_timeout_reports_timeout(client, monkeypatch):
    # Timeout lands well before the held transaction finishes
    monkeypatch.setattr(chaos_service, "TRANSACTION_TIMEOUT_MARGIN_MS", -150)

    response = await client.post("/api/chaos/db-timeout", params={"duration": 200})

    assert response.status_code == 500
    assert response.json() == {"error": "TimeoutError"}
