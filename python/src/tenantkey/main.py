"""
FastAPI application entry point.

This is the main server application that provides:
- Passkey (WebAuthn) registration and login
- Cookie sessions
- Tenant membership and role management
- System administration endpoints
- Monitoring and health checks
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from prometheus_client import make_asgi_app

from .core.config import settings
from .core.exceptions import ReplayError, TenantKeyError
from .services.admin_gate import SystemAdminGate

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize Sentry if DSN provided
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[FastApiIntegration()],
        traces_sample_rate=0.1,
    )
    logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.
    
    Handles startup and shutdown logic:
    - Database table creation (development only)
    - System admin gate seeded from configuration
    - Database connection pool shutdown
    """
    logger.info("Starting TenantKey API...")
    
    from .database import init_db, close_db
    
    if settings.ENVIRONMENT == "development":
        await init_db()
        logger.info("Database initialized")
    
    app.state.admin_gate = SystemAdminGate(settings.SYSTEM_ADMIN_EMAILS)
    logger.info(f"System admin gate seeded with {len(settings.SYSTEM_ADMIN_EMAILS)} emails")
    
    logger.info("API started successfully")
    
    yield
    
    logger.info("Shutting down TenantKey API...")
    await close_db()
    logger.info("API shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="TenantKey API",
    description="Passkey authentication and multi-tenant access control",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Session token extraction
from .middleware.auth import SessionCookieMiddleware

app.add_middleware(SessionCookieMiddleware, cookie_name=settings.SESSION_COOKIE_NAME)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.exception_handler(TenantKeyError)
async def tenantkey_error_handler(request: Request, exc: TenantKeyError) -> JSONResponse:
    """Render service errors as {"error": code, "detail": message}."""
    if isinstance(exc, ReplayError):
        logger.warning(f"SECURITY: replay rejected on {request.url.path}")
    elif exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.url.path}: {exc.message}")
    
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "detail": exc.message},
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "TenantKey API",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers and monitoring."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/health/ready")
async def readiness_check():
    """
    Readiness check for Kubernetes deployments.
    
    Returns 200 only when the database answers.
    """
    from sqlalchemy import text
    from .database import engine
    
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    
    return {"status": "ready"}


@app.get("/health/live")
async def liveness_check():
    """
    Liveness check for Kubernetes deployments.
    
    Returns 200 if service is alive (even if not ready).
    """
    return {"status": "alive"}


# Include API routers
from .api.v1 import router as api_v1_router

app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)


if __name__ == "__main__":
    import uvicorn
    
    uvicorn.run(
        "tenantkey.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
    )
