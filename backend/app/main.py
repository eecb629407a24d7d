"""
Podcast Billing - FastAPI Application

Main entry point for the billing API.
Provides endpoints for orders, payment verification, gateway webhooks,
refunds and subscription management.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.settings import settings
from app.domain.proration import utcnow
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.ledger import LedgerStore
from app.infrastructure.exceptions import (
    PodcastBillingError,
    ValidationError,
    UnauthorizedError,
    ForbiddenError,
    NotFoundError,
    InvalidStateError,
    InvalidSignatureError,
    InvalidAmountError,
    RefundWindowExpiredError,
    GatewayUnavailableError,
)
from app.infrastructure.payments.gateway_client import GatewayClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"Podcast Billing backend starting in {settings.environment} mode...")

    db_manager = None
    if settings.database_url:
        db_manager = DatabaseManager.from_settings(settings)
        await db_manager.verify_connection()
        app.state.ledger_store = LedgerStore(db_manager.session_factory)
        logger.info("Database connection pool initialized")
    else:
        logger.warning("DATABASE_URL not set; billing endpoints will answer 503")

    app.state.gateway = GatewayClient.from_settings(settings)
    app.state.clock = utcnow

    yield

    # Shutdown
    await app.state.gateway.close()
    if db_manager is not None:
        await db_manager.close()
        logger.info("Database connection pool closed")

    logger.info("Podcast Billing backend shutting down...")


app = FastAPI(
    title="Podcast Billing",
    description="Payments, subscriptions and refunds for the podcast platform",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def preflight_no_content(request: Request, call_next):
    """Answer every OPTIONS request with 204 and the CORS headers."""
    if request.method != "OPTIONS":
        return await call_next(request)

    headers = {
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": request.headers.get(
            "access-control-request-headers", "Authorization, Content-Type"
        ),
        "Access-Control-Max-Age": "600",
    }
    origin = request.headers.get("origin")
    if origin and origin in settings.allowed_origins:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
    return Response(status_code=204, headers=headers)


# ============================================================================
# Exception Handlers
# ============================================================================

_STATUS_BY_ERROR = (
    (UnauthorizedError, 401),
    (ForbiddenError, 403),
    (ValidationError, 400),
    (InvalidSignatureError, 400),
    (InvalidAmountError, 400),
    (RefundWindowExpiredError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (GatewayUnavailableError, 503),
)


def _status_for(exc: PodcastBillingError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(PodcastBillingError)
async def billing_error_handler(request: Request, exc: PodcastBillingError):
    """Map application errors to HTTP statuses."""
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=exc.to_dict(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies."""
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "error": "ValidationError",
            "message": "Invalid request",
            "details": {"errors": errors},
        },
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "podcast-billing"}


# ============================================================================
# Import and register routers
# ============================================================================

from app.api.routes import admin, orders, payments, refunds, subscriptions, webhooks  # noqa: E402

app.include_router(orders.router, prefix="/api", tags=["Orders"])
app.include_router(payments.router, prefix="/api", tags=["Payments"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(refunds.router, prefix="/api", tags=["Refunds"])
app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(admin.router)
