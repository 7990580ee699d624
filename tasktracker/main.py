import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from tasktracker.cache.layer import CacheLayer
from tasktracker.core.config import Settings, get_settings
from tasktracker.core.errors import register_exception_handlers
from tasktracker.core.logging_setup import setup_logging
from tasktracker.database import create_db_and_tables, ping_database
from tasktracker.dependencies import CacheDep, DbDep
from tasktracker.routers import tasks, users

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(settings: Settings | None = None, cache: CacheLayer | None = None) -> FastAPI:
    """
    Build the application.

    The cache handle is owned by the app: created here (or injected by the
    caller), connected on start-up and closed on shutdown.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.auto_create_tables:
            await create_db_and_tables()
        await app.state.cache.init_cache()
        yield
        await app.state.cache.close()

    app = FastAPI(
        title="Task Tracker API",
        description="Multi-user task tracking API with JWT auth and a Redis-backed response cache",
        swagger_ui_parameters={"displayRequestDuration": True},
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.cache = cache or CacheLayer(settings)

    register_exception_handlers(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)"
        )
        return response

    # Include routers
    app.include_router(users.router, prefix=settings.api_prefix)
    app.include_router(tasks.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Task Tracker API",
            "docs": "/docs",
            "version": VERSION,
        }

    @app.get("/health")
    async def health_check(db: DbDep, cache: CacheDep):
        try:
            database_ok = await ping_database(db)
        except (SQLAlchemyError, ConnectionError) as e:
            logger.error(f"Database health check failed: {e}")
            database_ok = False
        redis_ok = await cache.ping()

        if not database_ok:
            state = "unhealthy"
        elif not redis_ok:
            state = "degraded"
        else:
            state = "healthy"

        body = {
            "status": state,
            "database": database_ok,
            "redis": redis_ok,
            "cache": cache.get_stats(),
        }
        return JSONResponse(status_code=503 if not database_ok else 200, content=body)

    return app


app = create_app()
