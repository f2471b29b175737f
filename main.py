"""
Main application entry point for the Worship Team API.

This module builds the FastAPI application: it configures logging and
CORS, maps storage errors to HTTP responses, initializes the rate limiter
with a Redis backend, selects the storage backend and includes the routers
of every application area under ``/api``.

Modules:
- FastAPI: Web framework
- CORSMiddleware: Middleware for handling CORS
- FastAPILimiter: Rate limiting
- redis.asyncio: Async Redis client
- fakeredis: In-process Redis used when no server is reachable
- worship.storage: Storage contract and its errors
- worship.memory / worship.crud: The two storage backends
- worship.seed: Demo fixtures
- worship.core: Application settings
"""

import logging
from contextlib import asynccontextmanager

from fakeredis import FakeAsyncRedis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_limiter import FastAPILimiter
import redis.asyncio as redis

from worship import (
    auth,
    availability,
    messages,
    ministries,
    services,
    songs,
    team,
    users,
)
from worship.core import get_settings
from worship.crud import DatabaseStorage
from worship.database import SessionLocal, init_db
from worship.logging_config import setup_logging
from worship.memory import MemoryStorage
from worship.seed import seed_demo_data
from worship.storage import ConflictError, MissingReferenceError, Storage

logger = logging.getLogger(__name__)

ROUTERS = (
    auth.router,
    users.router,
    ministries.router,
    team.router,
    songs.router,
    services.router,
    availability.router,
    messages.router,
)


async def init_rate_limiter(redis_url: str) -> None:
    """
    Initialize the rate limiter with Redis.

    Falls back to an in-process fakeredis server when Redis is unavailable
    (e.g., during tests or offline development).
    """
    redis_client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
    try:
        await FastAPILimiter.init(redis_client)
    except Exception:
        logger.warning("Redis at %s unavailable, rate limiting in process", redis_url)
        await FastAPILimiter.init(FakeAsyncRedis(decode_responses=True))


def init_storage(app: FastAPI) -> None:
    """
    Prepare the storage backend chosen by ``STORAGE_BACKEND``.

    The memory backend keeps one ``MemoryStorage`` on ``app.state.storage``
    for the whole process. The database backend creates missing tables and
    leaves ``app.state.storage`` empty so each request opens its own session.
    Demo data is loaded into either when ``SEED_DEMO_DATA`` is set.
    """
    settings = get_settings()
    if app.state.storage is None and settings.STORAGE_BACKEND == "memory":
        app.state.storage = MemoryStorage()

    if app.state.storage is not None:
        if settings.SEED_DEMO_DATA:
            seed_demo_data(app.state.storage)
        return

    init_db()
    if settings.SEED_DEMO_DATA:
        db = SessionLocal()
        try:
            seed_demo_data(DatabaseStorage(db))
        finally:
            db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the rate limiter and the storage backend, close Redis on shutdown."""
    settings = get_settings()
    await init_rate_limiter(settings.REDIS_URL)
    init_storage(app)
    backend = type(app.state.storage).__name__ if app.state.storage else "DatabaseStorage"
    logger.info("Worship Team API started with %s", backend)
    yield
    await FastAPILimiter.close()


async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def missing_reference_handler(request: Request, exc: MissingReferenceError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def create_app(storage: Storage | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        storage (Storage | None): Backend to serve every request with. When
            omitted the backend is picked by ``STORAGE_BACKEND`` at startup.

    Returns:
        FastAPI: Configured application.
    """
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    app = FastAPI(title="Worship Team API", lifespan=lifespan)
    app.state.storage = storage

    # Configure CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ConflictError, conflict_handler)
    app.add_exception_handler(MissingReferenceError, missing_reference_handler)

    # Include routers for application areas
    for router in ROUTERS:
        app.include_router(router, prefix="/api")

    @app.get("/")
    def root():
        """
        Root endpoint for the API.

        Returns a simple JSON message directing users to the Swagger UI.

        Returns:
            dict: JSON message with information about the API
        """
        return {"msg": "Worship Team API. Visit /docs for Swagger UI"}

    return app


app = create_app()
