"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers all API routers.
"""
import os
import logging
from datetime import datetime
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.config import settings
from .core.logging_config import configure_logging

# Import routers
from .api.routers import upload_sessions, upload_history, uploads

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown events."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
        yield
        return

    # Startup: Initialize database tables
    try:
        from .domain.uploads.uploaded_files import create_upload_tables

        logger.info("Initializing database tables...")
        create_upload_tables()
    except Exception:
        logger.exception("Failed to initialize database tables; the application cannot start")
        raise  # Re-raise to prevent app from starting with broken database

    yield  # Application runs here


# Initialize FastAPI application
app = FastAPI(
    title="Transport CRM Import API",
    version="1.0.0",
    description="Spreadsheet import pipeline for medical-transport operations: ingest, map, stage and audit uploads",
    lifespan=lifespan
)

# Configure CORS middleware
# Allow origins from environment variable or defaults for development
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
# Strip whitespace from origins
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(upload_sessions.router)
app.include_router(upload_history.router)
app.include_router(uploads.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "Transport CRM Import API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for deployment monitoring."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "transport-crm-import-api"
    }
