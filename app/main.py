"""
Crossbuild API - Main Application
Submission and status interface for cross-target Android build pipelines.
"""
import logging
from contextlib import asynccontextmanager

import redis
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.routers import builds
from app.routers.builds import QUEUE_NAME, get_redis

_log = logging.getLogger(__name__)


# =============================================================================
# Lifespan Event Handler
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events"""
    _log.info("Crossbuild API starting (artifacts at %s)", settings.ARTIFACTS_PATH)
    yield
    _log.info("Crossbuild API stopped")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title=settings.API_TITLE,
    description="Submit cross-target build pipelines and fetch their reports and artifact manifests",
    version=settings.API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return 422 with structured error details (malformed pipeline requests)."""
    body = await request.body()
    _log.warning(
        "422 on %s %s  body[:200]=%s  errors=%s",
        request.method, request.url.path, body[:200], exc.errors()[:3],
    )
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
async def health_check(redis_client: redis.Redis = Depends(get_redis)):
    """Liveness plus queue visibility; degraded when Redis is unreachable."""
    try:
        queue_depth = redis_client.llen(QUEUE_NAME)
    except redis.RedisError as e:
        _log.warning("Redis unavailable: %s", e)
        queue_depth = None
    return {
        "status": "healthy" if queue_depth is not None else "degraded",
        "service": "crossbuild-api",
        "version": settings.API_VERSION,
        "queue_depth": queue_depth,
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Crossbuild API - Cross-Target Build Orchestrator",
        "submit": "POST /builds/pipeline",
        "status": "GET /builds/job/{job_id}",
        "targets": "GET /builds/targets",
        "docs": "/docs",
        "health": "/health"
    }


# =============================================================================
# Register Routers
# =============================================================================

app.include_router(builds.router, prefix="/builds", tags=["builds"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True  # For development
    )
