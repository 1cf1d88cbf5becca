"""FastAPI application entry point."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from lostfound.core.config import settings
from lostfound.core.structured_logging import configure_logging
from lostfound.db.session import engine

configure_logging(settings.LOG_LEVEL)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Never ship claimer emails or chat bodies
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from lostfound.core.rate_limit import limiter

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Lost & Found API",
    description="Claims, shipping settlement and claim chat for lost & found items",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Claimer-Token"],
)

# ============================================================================
# Routers
# ============================================================================

from lostfound.routers import (
    chat,
    claims,
    items,
    payments,
    payout_accounts,
    shipping_configs,
    unread,
    webhooks,
)
from lostfound.routers import websocket as ws_router

app.include_router(items.router, prefix="/items", tags=["items"])
app.include_router(claims.router, prefix="/claims", tags=["claims"])

# Claim rooms: durable chat log and read receipts
app.include_router(chat.router, prefix="/rooms", tags=["chat"])

# Settlement
app.include_router(payments.router, prefix="/payments", tags=["payments"])
app.include_router(shipping_configs.router, prefix="/shipping-configs", tags=["shipping"])
app.include_router(payout_accounts.router, prefix="/payout-account", tags=["payout-account"])

# User-scoped unread counts
app.include_router(unread.router, prefix="/me", tags=["unread"])

# Payment processor callbacks
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# Realtime
app.include_router(ws_router.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
