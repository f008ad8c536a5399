"""
Main FastAPI application for the fulfillment ledger.
Serves health, the order automation cron trigger, and metrics.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import automation, health
from app.core.errors import LedgerError
from app.core.logging import configure_logging
from app.utils.metrics import ledger_errors_total, router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Stringing Fulfillment Ledger",
    description="Payment confirmation, vouchers, points and order automation",
    version="1.0.0",
)


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    ledger_errors_total.labels(kind=exc.kind.value).inc()
    logger.info(
        "ledger_error",
        extra={"kind": exc.kind.value, "error": exc.message, "status": exc.status_code},
    )
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.as_dict()})


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(automation.router)
app.include_router(metrics_router)
