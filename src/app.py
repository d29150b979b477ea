"""Bistro FastAPI application.

Web server for the order, inventory and payment core. Commands are processed
synchronously; every request runs inside the bistro domain context.

The lifespan installs the background PaymentWatcher and the ExpirySweeper,
and shuts both down on exit.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

from contextlib import asynccontextmanager

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - "test"       → event_processing = "sync"  (projectors fire in UoW)
#   - "production" → event_processing = "async" (projectors fire via Engine)
import structlog
from bistro.domain import bistro
from bistro.utils.logging import add_context, clear_context, configure_logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

configure_logging()
bistro.init()

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from bistro.payment.watcher import ExpirySweeper, PaymentWatcher, reset_watcher, set_watcher

    set_watcher(PaymentWatcher(bistro))
    sweeper = ExpirySweeper(bistro)
    sweeper.start()
    logger.info("Payment reconciliation started", sweep_interval=sweeper.interval)
    try:
        yield
    finally:
        sweeper.stop()
        reset_watcher()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Bistro API",
    description="Restaurant POS core — ingredient ledger, menu availability, orders & payments",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the bistro domain context and bind request details to the log context."""
    add_context(method=request.method, path=request.url.path)
    try:
        with bistro.domain_context():
            response = await call_next(request)
        return response
    finally:
        clear_context()


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from bistro.api import (  # noqa: E402
    ingredient_router,
    menu_router,
    order_router,
    payment_router,
    register_error_handlers,
)

app.include_router(ingredient_router)
app.include_router(menu_router)
app.include_router(order_router)
app.include_router(payment_router)
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    from bistro.gateway import get_gateway
    from bistro.payment.watcher import get_watcher

    return JSONResponse(
        content={
            "status": "ok",
            "domain": bistro.name,
            "gateway": type(get_gateway()).__name__,
            "payment_watcher": get_watcher() is not None,
        }
    )
