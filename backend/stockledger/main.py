"""
Stockledger - FastAPI Application Entry Point.

Storefront channel sync and purchase ledger: authenticated webhook
ingestion, exactly-once stock reconciliation, claim-guarded agent
approvals and a purchase invoice/payment ledger.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from stockledger.config import get_settings
from stockledger.database import Base, engine, get_db
from stockledger.errors import StockLedgerError, stockledger_error_handler
from stockledger.routers import agents, channels, inventory, invoices, webhooks

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup: Create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    yield

    # Shutdown: Cleanup
    await engine.dispose()
    logger.info("Database connection closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Storefront channel sync, inventory reconciliation and purchase ledger",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_exception_handler(StockLedgerError, stockledger_error_handler)

# CORS Middleware (for the operator frontend)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        settings.FRONTEND_URL,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Force HTTPS in production
        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


app.add_middleware(SecurityHeadersMiddleware)

# Include Routers
app.include_router(webhooks.router, prefix="/api/channels", tags=["Webhooks"])
app.include_router(channels.router, prefix="/api/channels", tags=["Channels"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["Inventory"])
app.include_router(agents.router, prefix="/api/agents", tags=["Agents"])
app.include_router(invoices.router, prefix="/api/invoices", tags=["Invoices"])


@app.get("/health")
async def health_check(db=Depends(get_db)):
    """Deep Health Check: Verifies Database Connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        # Return 503 so load balancers know to stop sending traffic
        raise HTTPException(status_code=503, detail="Database disconnected")


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "status": "operational"}
