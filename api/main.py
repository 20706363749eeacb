"""
FastAPI API Service Entry Point
"""

import logging

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.middleware.transactions import get_transaction_context, transaction_route_class
from database.connection import dispose_engines
from shared.logging_config import configure_logging
from transactions import (
    READ_ONLY_SESSION_OPTIONS,
    SessionTemplate,
    TransactionContext,
    TransactionCoordinator,
)

HEALTH_SESSION_NAME = "health"

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Transactional API",
    version="1.0.0",
)

health_coordinator = TransactionCoordinator(
    [SessionTemplate(HEALTH_SESSION_NAME, READ_ONLY_SESSION_OPTIONS)]
)
health_router = APIRouter(route_class=transaction_route_class(health_coordinator))


@app.on_event("shutdown")
async def shutdown_dispose_engines():
    """Release pooled database connections."""
    await dispose_engines()
    logger.info("Database engines disposed")


# Exception handler for validation errors raised outside transactional routes
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": exc.errors(include_url=False)},
    )


@health_router.get("/health")
async def health_check(
    context: TransactionContext = Depends(get_transaction_context),
) -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Runs SELECT 1 through a read-only transactional session.

    Returns:
        200 OK if the database is reachable (or bypassed)
        503 Service Unavailable if degraded
    """
    health_status = {"status": "healthy", "database": "unknown"}
    status_code = 200

    if context.acquisition_error is not None:
        health_status["database"] = "disconnected"
        health_status["status"] = "degraded"
        return JSONResponse(status_code=503, content=health_status)

    session = context.get(HEALTH_SESSION_NAME)
    if session is None:
        health_status["database"] = "bypassed"
        return JSONResponse(status_code=status_code, content=health_status)

    try:
        await session.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Health check query failed: {e}")
        health_status["database"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


app.include_router(health_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Transactional API - Use /health for health checks"}
