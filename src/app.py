"""Storefront ordering API.

Processes commands synchronously over HTTP. Every request runs inside the
ordering domain context and carries a request id in its log lines.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from ordering.domain import ordering
from ordering.utils.logging import add_context, clear_context, configure_logging

configure_logging()

# PROTEAN_ENV selects the config overlay in domain.toml (memory, sqlite, production)
ordering.init()

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Storefront Ordering API",
    description="Checkout, order lifecycle, stock and order timeline",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the ordering domain context and bind request-scoped log context."""
    clear_context()
    add_context(request_id=request.headers.get("x-request-id") or uuid4().hex, path=request.url.path)
    try:
        with ordering.domain_context():
            return await call_next(request)
    finally:
        clear_context()


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from ordering.api.routes import admin_router, order_router, rates_router  # noqa: E402

app.include_router(order_router)
app.include_router(rates_router)
app.include_router(admin_router)


@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": ordering.name})
