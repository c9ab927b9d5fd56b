# File: main.py

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from routers import bookings, saved_routes, trips

from config import settings
from database import engine, async_session
from exceptions import SeatShareError
from services.container import build_services

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"🚀 Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        raise

    yield

    # Shutdown
    logger.info(f"🛑 Shutting down {settings.APP_NAME}...")
    await engine.dispose()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="SeatShare - seat inventory, booking requests and route-match notifications for shared rides",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
    lifespan=lifespan
)

# Collaborators are built once here and reached through services.container.get_services
app.state.services = build_services(settings, async_session)

# CORS: configured origins, or everything in development when none are set
all_origins = [str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS] or ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=all_origins,
    allow_credentials="*" not in all_origins,
    allow_methods=["GET", "POST", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=[
        "Accept",
        "Accept-Language",
        "Content-Language",
        "Content-Type",
        "Authorization",
        "X-Requested-With",
    ],
)

logger.info(f"🌐 CORS Origins configured: {all_origins}")

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests."""
    start_time = time.time()
    client_host = request.client.host if request.client else "-"
    logger.info(f"📨 {request.method} {request.url.path} - {client_host}")

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(f"📤 {request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s")
    return response

# Exception handlers
@app.exception_handler(SeatShareError)
async def seatshare_exception_handler(request: Request, exc: SeatShareError):
    """Maps domain errors to their HTTP status."""
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(f"⚠️ {type(exc).__name__} on {request.method} {request.url.path}: {exc.detail}")
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": type(exc).__name__},
        headers=headers,
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(f"❌ Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred. Please try again later.",
            "error_id": str(id(exc))
        }
    )

# === TRIPS, BOOKING REQUESTS, SAVED ROUTES ===
app.include_router(
    trips.router,
    prefix=settings.API_V1_STR,
    tags=["Trips"]
)

app.include_router(
    bookings.router,
    prefix=settings.API_V1_STR,
    tags=["Booking Requests"]
)

app.include_router(
    saved_routes.router,
    prefix=settings.API_V1_STR,
    tags=["Saved Routes"]
)

# === ROOT ENDPOINTS ===

@app.get("/", tags=["Root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "status": "operational",
        "docs": f"{settings.API_V1_STR}/docs",
    }

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for monitoring."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "database": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "version": settings.APP_VERSION,
                "database": "disconnected",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
        access_log=True
    )
