"""
FastAPI backend for meeting-intelligence table browsing and insight extraction.

Cached, rate-limited database browsing plus a scheduled job that extracts
project insights from meeting transcripts.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from middleware.rate_limit import RateLimitMiddleware
from routers import admin, database, insights

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)

AVAILABLE_ENDPOINTS = [
    "/health",
    "/api/v1/database/tables",
    "/api/v1/insights",
    "/api/v1/admin/cache/invalidate/{table}",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    settings = container.settings()
    logger.info("Starting meeting insights service", environment=settings.environment)

    # Start services
    await container.database().startup()
    await container.cache_store().startup()
    await container.rate_limit_store().startup()
    set_startup_time()
    await container.cleanup_service().start()

    if settings.scheduler_enabled:
        from services.scheduler import register_default_jobs, start_scheduler
        register_default_jobs(settings)
        start_scheduler()

    logger.info("Services started successfully", kv_backend=container.cache_store().backend)
    yield

    # Shutdown
    await container.cleanup_service().stop()
    if settings.scheduler_enabled:
        from services.scheduler import shutdown_scheduler
        shutdown_scheduler()
    await container.rate_limit_store().shutdown()
    await container.cache_store().shutdown()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Meeting Insights Service",
    version="2.0.0",
    description="Cached table browsing, rate limiting and meeting insight extraction",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error("Unhandled exception", path=request.url.path,
                         error=f"{type(e).__name__}: {str(e)}", exc_info=True)
            return ORJSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )


app.add_middleware(CatchAllExceptionsMiddleware)

# Rate limiting for selected routes
app.add_middleware(RateLimitMiddleware)

# Add CORS middleware (must be AFTER exception middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Cache", "X-RateLimit-Limit", "X-RateLimit-Remaining",
                    "X-RateLimit-Reset", "Retry-After"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("query", "path", "body"))
    message = f"Invalid {location}: {first.get('msg')}" if location else "Invalid request"
    return ORJSONResponse(status_code=400, content={"success": False, "error": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return ORJSONResponse(
            status_code=404,
            content={"success": False, "error": "Not found", "availableEndpoints": AVAILABLE_ENDPOINTS},
        )
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# Include routers
app.include_router(database.router)
app.include_router(admin.router)
app.include_router(insights.router)


@app.get("/health")
async def health_check():
    """Database and key-value status, uptime and feature flags."""
    return await get_health_status(
        container.database(),
        container.cache_store(),
        container.settings(),
    )


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting meeting insights service",
               host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log", "*.db"] if settings.debug else None,
        workers=1 if settings.debug else settings.workers
    )
