"""
CaveClub API - FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import ServiceError
from core.logging import configure_logging

settings = get_settings()
configure_logging(settings.log_level, json_logs=settings.log_json)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("CaveClub API starting up", version=settings.app_version)
    yield
    logger.info("CaveClub API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Wine subscription fulfillment and replenishment",
    lifespan=lifespan,
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render domain errors as {"error": kind, "detail": message}."""
    if exc.status_code >= 500:
        logger.error("api.service_error", path=request.url.path, kind=exc.kind, detail=exc.message)
    else:
        logger.info("api.service_error", path=request.url.path, kind=exc.kind, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import (
    inventory,
    notifications,
    payments,
    purchase_orders,
    recommendations,
    shipments,
    subscriptions,
)

app.include_router(subscriptions.router)
app.include_router(shipments.router)
app.include_router(inventory.router)
app.include_router(purchase_orders.router)
app.include_router(notifications.router)
app.include_router(recommendations.router)
app.include_router(payments.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
