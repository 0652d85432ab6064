import logging
import time
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.cache.layer import CacheLayer, get_cache
from sre_demo.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])

STARTED_AT = time.monotonic()


def _uptime() -> float:
    return round(time.monotonic() - STARTED_AT, 3)


def _mb(value: int) -> str:
    return f"{round(value / 1024 / 1024)} MB"


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.exec(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False


@router.get("")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": _uptime(),
    }


@router.get("/detailed")
async def detailed_health_check(
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    """Probe the store and the cache independently; 503 if either is down"""
    database_ok = await _database_ok(db)
    redis_ok = await cache.ping()

    healthy = database_ok and redis_ok
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": _uptime(),
            "checks": {
                "database": "healthy" if database_ok else "unhealthy",
                "redis": "healthy" if redis_ok else "unhealthy",
            },
            "cache": cache.get_stats(),
        },
    )


@router.get("/memory")
async def memory_usage():
    process = psutil.Process()
    memory = process.memory_info()
    return {
        "rss": _mb(memory.rss),
        "vms": _mb(memory.vms),
        "percent": round(process.memory_percent(), 2),
        "system_available": _mb(psutil.virtual_memory().available),
    }


@router.get("/cpu")
async def cpu_usage():
    times = psutil.Process().cpu_times()
    return {
        "user": f"{round(times.user * 1000)} ms",
        "system": f"{round(times.system * 1000)} ms",
        "cores": psutil.cpu_count(logical=True),
    }


@router.get("/ready")
async def readiness(db: AsyncSession = Depends(get_db)):
    """Kubernetes readiness probe"""
    if await _database_ok(db):
        return {"status": "ready"}
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "not ready"}
    )


@router.get("/live")
async def liveness():
    """Kubernetes liveness probe"""
    return {"status": "alive"}
