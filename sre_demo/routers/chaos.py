import asyncio
import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from redis.asyncio import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from sre_demo.cache.layer import CacheLayer, get_cache
from sre_demo.core.config import SettingsDep
from sre_demo.database import get_db
from sre_demo.schemas import SeedRequest
from sre_demo.services.chaos_service import ChaosService, ChaosState, Scenario, get_chaos_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chaos", tags=["chaos"])


@router.get("/status")
async def get_status(state: ChaosState = Depends(get_chaos_state)):
    return state.status()


@router.post("/enable-all")
async def enable_all(state: ChaosState = Depends(get_chaos_state)):
    return ChaosService.enable_all(state)


@router.post("/disable-all")
async def disable_all(state: ChaosState = Depends(get_chaos_state)):
    return ChaosService.disable_all(state)


@router.post("/memory-leak/trigger")
async def trigger_memory_leak(state: ChaosState = Depends(get_chaos_state)):
    """Append a batch of objects that are never freed"""
    return ChaosService.trigger_memory_leak(state)


@router.post("/exhaust-pool")
async def exhaust_pool(
    settings: SettingsDep, state: ChaosState = Depends(get_chaos_state)
):
    """Open Redis connections outside any pool and never close them"""
    try:
        return await ChaosService.exhaust_pool(state, settings)
    except (RedisError, OSError) as e:
        logger.error(f"Connection pool exhaustion failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(e)}
        )


@router.post("/unhandled-promise")
async def unhandled_failure():
    """Start an async failure nobody awaits"""
    return ChaosService.trigger_unobserved_failure()


@router.post("/cpu-spike")
async def cpu_spike(duration: int = Query(default=30_000, ge=0, description="milliseconds")):
    # Must stay an async handler: a sync one would run in the threadpool
    return ChaosService.cpu_spike(duration)


@router.post("/db-timeout")
async def db_timeout(
    duration: int = Query(default=60_000, ge=0, description="milliseconds"),
    db: AsyncSession = Depends(get_db),
):
    """Hold a transaction (and its connection) open"""
    try:
        return await ChaosService.hold_transaction(db, duration)
    except (SQLAlchemyError, asyncio.TimeoutError) as e:
        # asyncio.TimeoutError has an empty message
        message = str(e) or type(e).__name__
        logger.error(f"Long transaction failed: {message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": message}
        )


@router.post("/seed-data")
async def seed_data(
    payload: SeedRequest | None = None,
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    count = payload.count if payload else SeedRequest().count
    return await ChaosService.seed_data(count, db, cache)


@router.post("/reset")
async def reset(
    state: ChaosState = Depends(get_chaos_state),
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
):
    """Disable every scenario and delete seeded test todos"""
    return await ChaosService.reset(state, db, cache)


@router.post("/{scenario}/enable")
async def enable_scenario(scenario: Scenario, state: ChaosState = Depends(get_chaos_state)):
    return ChaosService.enable(state, scenario)


@router.post("/{scenario}/disable")
async def disable_scenario(scenario: Scenario, state: ChaosState = Depends(get_chaos_state)):
    return ChaosService.disable(state, scenario)
