import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from sre_demo.cache.layer import cache_layer
from sre_demo.core.config import get_settings
from sre_demo.core.errors import register_error_handlers
from sre_demo.core.rate_limit import RateLimiter
from sre_demo.database import close_db, create_db_and_tables
from sre_demo.routers import chaos, health, projects, todos, users
from sre_demo.services.chaos_service import ChaosState

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("sre_demo")


def _log_unobserved_failure(loop: asyncio.AbstractEventLoop, context: dict):
    exc = context.get("exception")
    logger.error(f"Unobserved async failure: {context.get('message')}", exc_info=exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting SRE Demo API ({settings.environment})")
    asyncio.get_running_loop().set_exception_handler(_log_unobserved_failure)
    await create_db_and_tables()
    await cache_layer.init_cache()
    yield
    logger.info("🛑 Shutting down")
    await cache_layer.close()
    await close_db()


app = FastAPI(
    title="SRE Demo API",
    description="Todo/project tracking API with deliberate chaos scenarios",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)
app.state.chaos = ChaosState()

register_error_handlers(app)

# Middleware: the last one added runs first
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.middleware("http")(
    RateLimiter(settings.rate_limit_window_ms, settings.rate_limit_max_requests)
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["Strict-Transport-Security"] = "max-age=15552000; includeSubDomains"
    return response


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    if settings.leak_error_details:
        request.state.raw_body = await request.body()

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"
    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} ({duration:.3f}s)"
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "X-Cache"],
)

# Include routers
app.include_router(health.router)
app.include_router(todos.router)
app.include_router(chaos.router)
app.include_router(users.router)
app.include_router(projects.router)


@app.get("/")
async def root():
    return {
        "message": "SRE Demo API is running!",
        "docs": "/docs",
        "version": "1.0.0",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("sre_demo.main:app", host="0.0.0.0", port=settings.port)
