"""
Offers Service - Main Application
=================================

FastAPI application for offer verification, escrow funding and settlement.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.offers.errors import OfferError
from services.offers.routes import ledger, offers, settlements
from services.offers.services import OfferServices, build_offer_services
from shared.config import settings
from shared.database.postgres import PostgresClient
from shared.logging import get_logger, setup_logging
from shared.models import ErrorResponse, HealthResponse
from shared.zk.verifier import VerificationKeyNotFoundError


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="offers",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "offers_service_starting",
        environment=settings.environment.value,
        port=settings.ports.offers,
    )

    # Startup
    try:
        await PostgresClient.create_tables()
        logger.info("database_ready")

        # Tests install their own wiring before startup
        if getattr(app.state, "offers", None) is None:
            app.state.offers = build_offer_services()
        services: OfferServices = app.state.offers
        await services.state_machine.restore_budget_reservations()

        await services.gateway.ledger.connect()
        logger.info(
            "ledger_connected",
            mode=services.gateway.ledger.mode.value,
        )

        services.queue.start()

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("offers_service_shutting_down")
    await services.queue.stop()
    await services.gateway.ledger.disconnect()
    await PostgresClient.close()


# Create FastAPI application
app = FastAPI(
    title="PayAttn Offers Service",
    description="Zero-knowledge verified ad offers with escrowed settlement",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its dependencies.
    """
    components: dict[str, dict[str, Any]] = {}

    components["postgres"] = await PostgresClient.health_check()

    services: OfferServices | None = getattr(request.app.state, "offers", None)
    if services is not None:
        components["ledger"] = await services.gateway.ledger.health_check()
        components["settlement_queue"] = {
            "status": "healthy" if services.queue.running else "stopped",
        }

    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="offers",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "PayAttn Offers Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    offers.router,
    prefix="/api/v1/offers",
    tags=["Offers"],
)

app.include_router(
    ledger.router,
    prefix="/api/v1/ledger",
    tags=["Ledger"],
)

app.include_router(
    settlements.router,
    prefix="/api/v1/settlements",
    tags=["Settlements"],
)


# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(OfferError)
async def offer_error_handler(request: Request, exc: OfferError) -> JSONResponse:
    """Map domain errors to their status code and rejection reason."""
    logger.info(
        "offer_error",
        status_code=exc.status_code,
        error=exc.reason.value,
        offer_id=exc.offer_id,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(VerificationKeyNotFoundError)
async def verification_key_handler(request: Request, exc: VerificationKeyNotFoundError) -> JSONResponse:
    """A missing key is an operator problem, not a bad proof."""
    logger.error(
        "verification_key_missing",
        error=str(exc),
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(
            error="VerificationKeyMissing",
            detail=str(exc),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "status_code": exc.status_code,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
            "status_code": 500,
        },
    )


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.offers.main:app",
        host="0.0.0.0",
        port=settings.ports.offers,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
