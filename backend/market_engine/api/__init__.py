"""API router package."""
from market_engine.api.markets import router as markets_router
from market_engine.api.portfolio import router as portfolio_router

__all__ = [
    "markets_router",
    "portfolio_router",
]
