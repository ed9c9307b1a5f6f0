from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager, suppress
from sqlalchemy import text
import asyncio
import logging

from app.core.config import settings
from app.core.database import AsyncSessionLocal, init_db
from app.core.events import event_bus
from app.core.logging_config import setup_logging
from app.core.redis import redis_client, token_store
from app.api.v1.router import api_router
from app.services.cache_invalidation import register_cache_subscribers
from app.services.job_worker import recover_stale_jobs, register_indexing_subscribers, worker_loop
from app.utils.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ContentException,
    FileOperationError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)

setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
logger = logging.getLogger(__name__)

EXCEPTION_STATUS_CODES = {
    ValidationError: 400,
    InvalidOperationError: 400,
    AuthenticationError: 401,
    AuthorizationError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    FileOperationError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION} ({settings.ENVIRONMENT})")
    await init_db()
    await redis_client.connect()
    await token_store.connect()

    register_cache_subscribers(event_bus)
    if settings.INDEX_ON_MUTATION:
        register_indexing_subscribers(event_bus)

    worker_task = None
    if settings.INDEXING_WORKER_ENABLED:
        recovered = await recover_stale_jobs()
        if recovered:
            logger.warning(f"Recovered {recovered} stale indexing jobs")
        worker_task = asyncio.create_task(worker_loop())

    yield

    # Shutdown
    logger.info("Shutting down...")
    if worker_task:
        worker_task.cancel()
        with suppress(asyncio.CancelledError):
            await worker_task
    event_bus.clear()
    await redis_client.disconnect()
    await token_store.disconnect()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan
)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_code_for(exc: ContentException) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in EXCEPTION_STATUS_CODES:
            return EXCEPTION_STATUS_CODES[exc_type]
    return 500


@app.exception_handler(ContentException)
async def content_exception_handler(request: Request, exc: ContentException):
    status_code = _status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content={"Message": str(exc)}, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"Message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
    )
    return JSONResponse(status_code=400, content={"Message": f"Invalid request: {details}"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"Message": "An internal error occurred"})


# Include API router
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/api/docs",
        "redoc": "/api/redoc",
        "health": "/health",
        "api": "/api/v1"
    }


# Health check endpoint
@app.get("/health")
async def health_check():
    # Check database connection
    database_status = "healthy"
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        database_status = "unhealthy"

    # Check Redis connection
    redis_status = "healthy"
    try:
        if not await redis_client.ping() or not await token_store.ping():
            redis_status = "unhealthy"
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        redis_status = "unhealthy"

    healthy = database_status == "healthy" and redis_status == "healthy"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "services": {
                "database": database_status,
                "redis": redis_status
            }
        }
    )
