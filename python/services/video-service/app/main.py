"""
Video Upload Service - Main Application
FastAPI app for chunked video uploads to MinIO/S3 with live progress,
per-user quota and shareable links.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared_schemas.common import ErrorResponse
from shared_schemas.video_service import HealthCheckResponse
from app.api import clips, progress, quota, upload, videos
from app.core.catalog import rebuild_catalog
from app.core.config import settings
from app.core.dependencies import close_webhook_client
from app.core.errors import VideoServiceError
from app.core.manager.quota_tracker import quota_tracker
from app.core.manager.session_manager import session_manager
from app.core.manager.video_store import video_store
from app.core.upload.orchestrator import upload_orchestrator
from app.s3.client import s3_client

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def bootstrap_storage() -> None:
    """Make sure the video bucket exists, then reload the catalog from it."""
    bucket = settings.VIDEO_BUCKET
    try:
        created = await s3_client.run(s3_client.ensure_bucket_exists, bucket)
        logger.info(f"Video bucket {'created' if created else 'found'}: {bucket}")
    except Exception as e:
        # Storage may come up after us; uploads fail until it does
        logger.error(f"Could not prepare bucket {bucket}: {e}")

    try:
        await rebuild_catalog(s3_client, bucket, video_store, quota_tracker)
    except Exception as e:
        logger.error(f"Catalog rebuild from {bucket} failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION} ({settings.ENVIRONMENT})")
    await bootstrap_storage()
    await session_manager.initialize()

    yield

    logger.info(f"Stopping {settings.APP_NAME}, {len(upload_orchestrator.active_tasks)} uploads in flight")
    await upload_orchestrator.shutdown()
    await session_manager.shutdown()
    await close_webhook_client()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Chunked video uploads with live progress, per-user quota and shareable links",
    version=settings.APP_VERSION,
    lifespan=lifespan
)


# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "HEAD", "OPTIONS"],
    allow_headers=["*"],
)


# Include API routers
app.include_router(upload.router)
app.include_router(progress.router)
app.include_router(videos.router)
app.include_router(quota.router)

for router in clips.routers:
    app.include_router(router)


@app.get("/health", tags=["health"], response_model=HealthCheckResponse)
async def health_check():
    """Report storage reachability, catalog size and running uploads."""
    storage_ok = True
    try:
        await s3_client.run(s3_client.client.head_bucket, Bucket=settings.VIDEO_BUCKET)
    except Exception as e:
        logger.error(f"Health check could not reach {settings.VIDEO_BUCKET}: {e}")
        storage_ok = False

    report = HealthCheckResponse(
        status="healthy" if storage_ok else "unhealthy",
        s3_connection="ok" if storage_ok else "failed",
        videos=len(video_store),
        active_uploads=session_manager.active_count()
    )
    if storage_ok:
        return report
    return JSONResponse(status_code=503, content=report.model_dump(by_alias=True))


@app.exception_handler(VideoServiceError)
async def video_service_exception_handler(request: Request, exc: VideoServiceError):
    """Map service errors to their HTTP status with a user-safe message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=exc.message, error_code=exc.error_code).model_dump()
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    detail = str(exc) if settings.VERBOSE_ERRORS else "Internal server error"
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(detail=detail, error_code="INTERNAL_ERROR").model_dump()
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
        timeout_keep_alive=7200,  # 2 hours for very large file uploads
        limit_concurrency=100
    )
