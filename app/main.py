"""
Appointment Outbox Service - Main Application
FastAPI Entry Point with APScheduler for outbox health reporting
"""

from fastapi import FastAPI
from fastapi.responses import JSONResponse
import structlog

from app.config import settings
from app.database import init_db
from app.middleware import CorrelationIdMiddleware
from app.routers import appointments_router, outbox_router
from app.scheduler import start_scheduler, stop_scheduler
from app.services.monitoring import init_sentry, setup_logging

setup_logging(service="appointment-api")
init_sentry(process="api")
logger = structlog.get_logger()

# FastAPI App
app = FastAPI(
    title="Appointment Outbox Service",
    description="Appointment writes with transactional outbox and reliable event delivery",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)

# Register routers
app.include_router(appointments_router)
app.include_router(outbox_router)

# Set on startup
scheduler = None


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    global scheduler
    logger.info("startup", environment=settings.environment)

    init_db()
    logger.info("database_initialized")

    scheduler = start_scheduler(settings.environment)


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")
    stop_scheduler(scheduler)


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "Appointment Outbox Service",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health Check Endpoint
    """
    health_status = {
        "status": "healthy",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
            "database": "configured" if settings.database_url else "not_configured",
            "queue": "redis" if settings.redis_url else "stub",
        }
    }

    return JSONResponse(
        content=health_status,
        status_code=200
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
