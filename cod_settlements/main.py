"""COD Carrier Settlements - Main Application."""

import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cod_settlements import models  # noqa: F401  (registers tables on Base)
from cod_settlements.api.routes import (
    carriers,
    dispatch,
    ledger,
    reconciliation,
    settlement,
)
from cod_settlements.core.config import settings
from cod_settlements.core.database import Base, engine
from cod_settlements.core.exceptions import SettlementError, ValidationFailed
from cod_settlements.core.logging import setup_logging
from cod_settlements.core.logging_config import LOGGING_CONFIG
from cod_settlements.services.reconciliation.drafts import DraftStore

# Configure logging before anything else
logging.config.dictConfig(LOGGING_CONFIG)
logger = setup_logging(settings.log_level)

# Create all tables on startup
logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables ready")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.drafts = DraftStore(ttl_seconds=settings.draft_ttl_minutes * 60)
    logger.info("Draft store ready (ttl=%d min)", settings.draft_ttl_minutes)
    try:
        yield
    finally:
        app.state.drafts.close()


# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Carriers",
        "description": (
            "Carrier settlement configuration, delivery zones, city coverage "
            "rates and fee lookup for a destination."
        ),
    },
    {
        "name": "Dispatch",
        "description": (
            "Batch orders into dispatch sessions, hand them to a carrier "
            "(snapshotting each order's fee) or abandon them."
        ),
    },
    {
        "name": "Reconciliation",
        "description": (
            "Mark delivered and failed orders, record the cash the carrier "
            "handed over and produce the settlement. Drafts keep unsubmitted input."
        ),
    },
    {
        "name": "Settlements",
        "description": "Query settlements and pay them out, fully or partially.",
    },
    {
        "name": "Ledger",
        "description": (
            "Per-carrier balances, movement history, unsettled movements, "
            "manual adjustments and payment registration."
        ),
    },
]


app = FastAPI(
    title="COD Carrier Settlements",
    description=(
        "## Cash-on-Delivery Carrier Settlement API\n\n"
        "Tracks orders handed to third-party couriers, reconciles what each "
        "carrier reports and the cash it hands over against what was expected, "
        "and keeps a signed ledger of who owes whom.\n\n"
        "### Sign convention\n"
        "Every amount in the ledger and `net_receivable` on settlements is "
        "**positive when the carrier owes the store** and negative when the "
        "store owes the carrier.\n\n"
        "### Flow\n"
        "1. `POST /api/v1/dispatch-sessions` with the orders for a carrier and date\n"
        "2. `POST /api/v1/dispatch-sessions/{id}/dispatch` snapshots shipping fees\n"
        "3. `POST /api/v1/reconciliation` with outcomes and cash collected\n"
        "4. `POST /api/v1/settlements/{id}/pay` or "
        "`POST /api/v1/ledger/carriers/{id}/payments`\n"
    ),
    version="1.0.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
    else:
        logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
    errors = exc.errors if isinstance(exc, ValidationFailed) else {}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message, "errors": errors},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = {
        ".".join(str(part) for part in err["loc"] if part != "body"): err["msg"]
        for err in exc.errors()
    }
    return JSONResponse(
        status_code=422,
        content={
            "error": ValidationFailed.code,
            "detail": "Invalid request",
            "errors": errors,
        },
    )


app.include_router(carriers.router, prefix="/api/v1/carriers", tags=["Carriers"])
app.include_router(
    dispatch.router, prefix="/api/v1/dispatch-sessions", tags=["Dispatch"]
)
app.include_router(
    reconciliation.router, prefix="/api/v1/reconciliation", tags=["Reconciliation"]
)
app.include_router(
    settlement.router, prefix="/api/v1/settlements", tags=["Settlements"]
)
app.include_router(ledger.router, prefix="/api/v1/ledger", tags=["Ledger"])

logger.info("COD Settlements API ready - routes registered")


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint.

    Returns a simple JSON object confirming the service is running.
    Useful for load balancers and monitoring systems.
    """
    return {"status": "healthy", "service": "cod-settlements"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("cod_settlements.main:app", host="0.0.0.0", port=settings.app_port)
