"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.app.api import gateway
from backend.app.core.config import get_settings
from backend.app.core.exception_handlers import register_exception_handlers
from backend.app.services.airtable import AirtableClient

logger = logging.getLogger(__name__)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: open the record store client
    app.state.record_store = AirtableClient(settings)
    logger.info(f"[STARTUP] Record store at {settings.airtable_api_base_url}")

    yield

    # Shutdown: close HTTP connections
    await app.state.record_store.aclose()
    logger.info("[SHUTDOWN] Cleaned up resources")


app = FastAPI(
    title="Lean Coffee API",
    description="Lean Coffee board: topics, capped voting and a todo/doing/done workflow",
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan,
)

# Register custom exception handlers
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Lean Coffee API",
        "version": "1.0.0",
        "description": "Lean Coffee board: topics, capped voting and a todo/doing/done workflow",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


app.include_router(gateway.router)
