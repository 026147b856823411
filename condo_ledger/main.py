"""Condo Ledger FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from condo_ledger.api import payment
from condo_ledger.models import Base
from condo_ledger.services import engine
from condo_ledger.services.config import settings
from condo_ledger.services.logging import setup_server_logging

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle (startup and shutdown)."""
    setup_server_logging(settings.log_file, settings.log_level)
    # Startup: Initialize database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized")
    yield
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.api_title,
    description="Payment distribution and allocation engine for shared-property finances",
    version=settings.api_version,
    lifespan=lifespan,
)


# Include routers
app.include_router(payment.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
