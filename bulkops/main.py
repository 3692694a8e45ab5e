"""
FastAPI application entry point.

This module initializes the FastAPI application and registers the bulk
mutation, import and operation-tracking routers.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI

from .api.routers import bulk, imports, operations
from .core.config import settings
from .core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level, log_sql=settings.log_sql)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the records and bulk_operations tables on startup."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
        yield
        return

    from .db.session import get_engine
    from .db.tables import create_tables

    try:
        create_tables(get_engine())
        logger.info("Database tables ready")
    except Exception:
        logger.exception("Failed to initialize database tables")
        raise

    yield


app = FastAPI(
    title="Bulk Operations API",
    version="1.0.0",
    description="Chunked bulk mutations and file imports for business entities",
    lifespan=lifespan,
)

# Operation routes first so /bulk/operations/... is never taken for an entity type
app.include_router(operations.router)
app.include_router(imports.router)
app.include_router(bulk.router)


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "bulkops-api",
    }
