"""
FastAPI application entry point for the add-on entitlement engine.

Tenant identity is attached upstream on request.state.tenant_context.
All /api routes require it.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from src.api.routes import entitlements
from src.config import addon_settings
from src.entitlements.middleware import register_entitlement_exception_handlers
from src.workers.addon_expiry_worker import build_scheduler

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting add-on entitlement API")

    scheduler = None
    if addon_settings.ADDON_EXPIRY_SYNC_ENABLED:
        scheduler = build_scheduler()
        scheduler.start()
    else:
        logger.info("Add-on expiry sync disabled in this process")
    app.state.addon_sync_scheduler = scheduler

    yield

    logger.info("Shutting down add-on entitlement API")
    if scheduler is not None:
        scheduler.stop()


app = FastAPI(
    title="Add-on Entitlement API",
    description="Per-tenant add-on entitlements, dependency checks and employee quotas",
    version="1.0.0",
    lifespan=lifespan
)

register_entitlement_exception_handlers(app)


@app.get("/health", tags=["health"])
async def health():
    """Liveness check (no tenant context required)."""
    return {"status": "ok"}


# Include entitlement routes (requires tenant context)
app.include_router(entitlements.router)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
