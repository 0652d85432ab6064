import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import psutil
from fastapi import Request
from redis.asyncio import Redis
from sqlalchemy import text
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.cache.layer import CacheLayer
from sre_demo.core.config import Settings
from sre_demo.core.errors import BadRequestError
from sre_demo.models import Priority
from sre_demo.repositories.todo_repository import TodoRepository
from sre_demo.services.todo_service import ITEM_KEY_PATTERN, LIST_KEY_PATTERN

logger = logging.getLogger(__name__)

LEAK_BATCH_SIZE = 10_000
LEAK_PAYLOAD = ["x" * 1000] * 1000
POOL_EXHAUSTION_CONNECTIONS = 50
UNOBSERVED_FAILURE_DELAY = 0.1
TRANSACTION_TIMEOUT_MARGIN_MS = 10_000
SEED_TITLE_PREFIX = "Test Todo"


class Scenario(str, Enum):
    MEMORY_LEAK = "memory-leak"
    CPU_SPIKE = "cpu-spike"
    DB_TIMEOUT = "db-timeout"
    POOL_EXHAUSTION = "pool-exhaustion"
    UNHANDLED_PROMISE = "unhandled-promise"


@dataclass
class ChaosState:
    """
    Fault toggles shared by every request of one process.

    Not persisted and not locked: flips are idempotent and the state is
    lost on restart.
    """

    toggles: dict[Scenario, bool] = field(
        default_factory=lambda: {scenario: False for scenario in Scenario}
    )
    leak_store: list[dict[str, Any]] = field(default_factory=list)
    # Connections opened by exhaust_pool; never closed.
    leaked_connections: list[Redis] = field(default_factory=list)

    def set_all(self, enabled: bool):
        self.toggles = {scenario: enabled for scenario in Scenario}

    def status(self) -> dict:
        return {
            "scenarios": {
                scenario.value: enabled for scenario, enabled in self.toggles.items()
            },
            "memory_leak_size": len(self.leak_store),
            "leaked_connections": len(self.leaked_connections),
        }


def get_chaos_state(request: Request) -> ChaosState:
    return request.app.state.chaos


def _rss_mb() -> int:
    return round(psutil.Process().memory_info().rss / 1024 / 1024)


class ChaosService:
    @staticmethod
    def enable(state: ChaosState, scenario: Scenario) -> dict:
        state.toggles[scenario] = True
        logger.warning(f"🔥 CHAOS: {scenario.value} enabled")
        return {"message": f"{scenario.value} scenario enabled", "state": state.status()}

    @staticmethod
    def disable(state: ChaosState, scenario: Scenario) -> dict:
        state.toggles[scenario] = False
        if scenario is Scenario.MEMORY_LEAK:
            state.leak_store.clear()
        logger.info(f"✅ CHAOS: {scenario.value} disabled")
        return {"message": f"{scenario.value} scenario disabled", "state": state.status()}

    @staticmethod
    def trigger_memory_leak(state: ChaosState) -> dict:
        if not state.toggles[Scenario.MEMORY_LEAK]:
            raise BadRequestError("Memory leak scenario not enabled")

        for i in range(LEAK_BATCH_SIZE):
            state.leak_store.append(
                {
                    "data": list(LEAK_PAYLOAD),
                    "timestamp": datetime.now(timezone.utc),
                    "metadata": {"id": i, "info": "This object will never be freed"},
                }
            )

        heap_used = _rss_mb()
        logger.warning(
            f"🔥 CHAOS: Memory leak triggered, rss={heap_used} MB, "
            f"leak_size={len(state.leak_store)}"
        )
        return {
            "message": "Memory leak triggered",
            "current_heap_used": f"{heap_used} MB",
            "leaked_objects": len(state.leak_store),
        }

    @staticmethod
    async def exhaust_pool(state: ChaosState, settings: Settings) -> dict:
        logger.warning("🔥 CHAOS: Exhausting connection pool")

        # A fresh client (and pool) per connection, none of them ever closed
        opened = 0
        for _ in range(POOL_EXHAUSTION_CONNECTIONS):
            client = Redis.from_url(settings.redis_connection_string)
            await client.ping()
            state.leaked_connections.append(client)
            opened += 1

        return {
            "message": "Connection pool exhausted",
            "connections_created": opened,
            "total_leaked_connections": len(state.leaked_connections),
            "warning": "Application may now fail to get Redis connections",
        }

    @staticmethod
    def trigger_unobserved_failure() -> dict:
        logger.warning("🔥 CHAOS: Triggering unobserved async failure")

        async def risky_operation():
            await asyncio.sleep(UNOBSERVED_FAILURE_DELAY)
            raise RuntimeError("This async failure is intentionally unobserved!")

        # No reference, no await, no done callback
        asyncio.get_running_loop().create_task(risky_operation())

        return {
            "message": "Unobserved async failure triggered",
            "warning": "Check the logs for 'Task exception was never retrieved'",
        }

    @staticmethod
    def cpu_spike(duration_ms: int) -> dict:
        """Busy-loops on the calling thread; with async handlers that is the event loop."""
        logger.warning(f"🔥 CHAOS: Starting CPU intensive operation for {duration_ms}ms")

        started = time.monotonic()
        counter = 0.0
        while (time.monotonic() - started) * 1000 < duration_ms:
            for i in range(100_000):
                counter += math.sqrt(i) * random.random()

        return {
            "message": "CPU spike completed",
            "duration": f"{duration_ms}ms",
            "iterations": counter,
            "warning": "Event loop was blocked during this operation",
        }

    @staticmethod
    async def hold_transaction(db: AsyncSession, duration_ms: int) -> dict:
        logger.warning(f"🔥 CHAOS: Starting long-running database transaction ({duration_ms}ms)")

        async def transaction():
            async with db.begin():
                await db.exec(text("SELECT 1"))
                await asyncio.sleep(duration_ms / 1000)
                await db.exec(text("SELECT 2"))

        await asyncio.wait_for(
            transaction(), timeout=(duration_ms + TRANSACTION_TIMEOUT_MARGIN_MS) / 1000
        )
        return {
            "message": "Long transaction completed",
            "duration": f"{duration_ms}ms",
            "warning": "Connection was held for extended period",
        }

    @staticmethod
    def enable_all(state: ChaosState) -> dict:
        state.set_all(True)
        logger.warning("🔥 CHAOS: All scenarios enabled")
        return {"message": "All chaos scenarios enabled", "state": state.status()}

    @staticmethod
    def disable_all(state: ChaosState) -> dict:
        state.set_all(False)
        state.leak_store.clear()
        logger.info("✅ CHAOS: All scenarios disabled")
        return {"message": "All chaos scenarios disabled", "state": state.status()}

    @staticmethod
    async def seed_data(count: int, db: AsyncSession, cache: CacheLayer) -> dict:
        logger.info(f"Seeding {count} test todos")

        rows = [
            {
                "title": f"{SEED_TITLE_PREFIX} {i + 1}",
                "description": (
                    "This is a test todo item for demonstration purposes. "
                    f"Item number {i + 1}."
                ),
                "completed": random.random() > 0.5,
                "priority": random.choice(list(Priority)),
            }
            for i in range(count)
        ]
        created = await TodoRepository(db).bulk_create(rows)
        await cache.delete_pattern(LIST_KEY_PATTERN)

        return {"message": f"Created {created} test todos", "count": created}

    @staticmethod
    async def reset(state: ChaosState, db: AsyncSession, cache: CacheLayer) -> dict:
        logger.info("Resetting demo environment")

        state.set_all(False)
        state.leak_store.clear()

        deleted = await TodoRepository(db).delete_by_title_prefix(SEED_TITLE_PREFIX)
        # Deleted ids are not known here, so every cached item goes too
        await cache.delete_pattern(ITEM_KEY_PATTERN)
        await cache.delete_pattern(LIST_KEY_PATTERN)

        return {
            "message": "Demo environment reset",
            "chaos_disabled": True,
            "test_data_cleared": True,
            "deleted_todos": deleted,
        }
