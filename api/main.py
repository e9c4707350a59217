"""
Freight Lead Marketplace API - Main Application.

FastAPI application with CORS enabled for frontend communication. The
background jobs (expiry sweep, low-balance check, pricing refresh, webhook
retry) run inside the API process unless ENABLE_SCHEDULER is false.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.dependencies import get_container
from services.config import get_settings
from services.scheduler import BackgroundScheduler

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = get_container()
    scheduler = None
    if settings.enable_scheduler:
        scheduler = BackgroundScheduler.for_services(
            settings, container.lifecycle, container.wallet, container.publisher, container.pricing
        )
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
        container.notifier.shutdown(wait=False)


# Create FastAPI application
app = FastAPI(
    title="Freight Lead Marketplace API",
    description="Lead fee settlement, quote bidding windows and partner lead wallets",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS - Allow all origins for development
# TODO: Restrict origins to the partner and shipper portals in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "freight-lead-marketplace-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Freight Lead Marketplace API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import offers, quotes, wallets  # noqa: E402

app.include_router(offers.router, prefix="/api/v1", tags=["Offers"])
app.include_router(quotes.router, prefix="/api/v1", tags=["Quotes"])
app.include_router(wallets.router, prefix="/api/v1", tags=["Wallets"])
