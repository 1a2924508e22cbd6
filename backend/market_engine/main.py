"""
FastAPI main application.

Market data aggregation and ledger reconciliation API.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from typing import Optional

from market_engine import __version__
from market_engine.config import settings
from market_engine.api import markets_router, portfolio_router
from market_engine.api.markets import get_market_service
from market_engine.services.redis_client import close_redis_client, get_redis_client
from market_engine.services.refresh import PaginatedFeed, PollingScheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

# Background poll keeping the first market page (and its cache entry) fresh
_market_scheduler: Optional[PollingScheduler] = None

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Market data aggregation and ledger reconciliation for bonding-curve markets",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(markets_router)
app.include_router(portfolio_router)


@app.get("/health")
def health_check():
    """Health check endpoint with Redis availability."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "environment": settings.environment,
        "redis": "connected" if get_redis_client() is not None else "unavailable",
    }


@app.get("/")
def root():
    """Root endpoint with API information."""
    return {
        "message": "Market Engine API",
        "docs": "/api/docs",
        "health": "/health"
    }


# Startup event
@app.on_event("startup")
def startup_event():
    """Run on application startup."""
    global _market_scheduler
    logger.info(f"Starting {settings.app_name} in {settings.environment} mode")
    logger.info(f"Allowed origins: {settings.allowed_origins}")

    if settings.market_polling_enabled:
        feed = PaginatedFeed(get_market_service().list_markets)
        _market_scheduler = PollingScheduler(feed.reset, scope="markets")
        _market_scheduler.start()


# Shutdown event
@app.on_event("shutdown")
def shutdown_event():
    """Run on application shutdown."""
    global _market_scheduler
    if _market_scheduler is not None:
        _market_scheduler.stop(timeout=5)
        _market_scheduler = None
    close_redis_client()
    logger.info("Shutting down Market Engine API")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "market_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower()
    )
