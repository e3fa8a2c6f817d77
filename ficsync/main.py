"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ficsync.core.config import settings
from ficsync.core.exceptions import FicSyncError, RateLimited
from ficsync.db.session import engine

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
        send_default_pii=False,  # webhook payloads carry customer data
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi.errors import RateLimitExceeded
from ficsync.core.rate_limit import limiter

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="FIC Sync API",
    description="Fatture in Cloud webhook receiver and resource sync",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter


@app.exception_handler(FicSyncError)
async def ficsync_error_handler(request: Request, exc: FicSyncError):
    """Domain errors become ``{"error": message}`` with their status code."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Over-limit callers get the same body as any other domain error."""
    return await ficsync_error_handler(request, RateLimited())


# ============================================================================
# Routers
# ============================================================================

from ficsync.routers import fic_router, internal_router, webhooks_router, websocket_router

# FIC webhook receiver (public, rate limited per IP)
app.include_router(webhooks_router)

# OAuth connect flow and subscription management
app.include_router(fic_router)

# Internal endpoints (scheduled/cron jobs - protected by INTERNAL_SECRET)
app.include_router(internal_router)

# WebSocket for real-time sync notifications
app.include_router(websocket_router)


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
