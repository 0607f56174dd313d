"""orderflow FastAPI application.

Web server that processes commands synchronously via HTTP. Every request
runs inside the orderflow domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - default      → memory providers, event_processing = "sync"
#   - "production" → PostgreSQL, Redis, event_processing = "async"
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from orderflow.domain import orderflow  # noqa: E402
from orderflow.gateway import configure_gateways_from_env
from orderflow.utils.logging import configure_logging, log_context

configure_logging()
orderflow.init()
configure_gateways_from_env()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="orderflow API",
    description="Order lifecycle, inventory reservations and payment reconciliation",
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
    """Push the orderflow domain context for each request."""
    with orderflow.domain_context(), log_context(method=request.method, path=request.url.path):
        response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from orderflow.api import (  # noqa: E402
    approval_router,
    checkout_router,
    job_router,
    order_router,
    register_error_handlers,
    stock_router,
    webhook_router,
)

app.include_router(checkout_router)
app.include_router(order_router)
app.include_router(approval_router)
app.include_router(webhook_router)
app.include_router(stock_router)
app.include_router(job_router)
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": orderflow.name})
