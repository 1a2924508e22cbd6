"""Portfolio API endpoints."""
from functools import lru_cache
import logging

from fastapi import APIRouter, Depends, HTTPException

from market_engine.schemas.portfolio import PortfolioSnapshot
from market_engine.schemas.transaction import LedgerEntry, LedgerHistory
from market_engine.services.identifiers import is_address, normalize_id
from market_engine.services.portfolio_service import PortfolioService
from market_engine.services.refresh import RefreshGuard

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


@lru_cache()
def get_portfolio_service() -> PortfolioService:
    """Shared portfolio service instance."""
    return PortfolioService()


@lru_cache()
def get_refresh_guard() -> RefreshGuard:
    """Guard that keeps one snapshot refresh in flight per account."""
    return RefreshGuard()


def _validate_account(account: str) -> str:
    if not is_address(account):
        raise HTTPException(status_code=400, detail=f"Invalid account address: {account}")
    return account


@router.get("/{account}", response_model=PortfolioSnapshot)
def get_portfolio(
    account: str,
    service: PortfolioService = Depends(get_portfolio_service),
    guard: RefreshGuard = Depends(get_refresh_guard),
):
    """
    Portfolio snapshot of an account, recomputed on every call.

    A request arriving while a refresh for the same account is running gets
    the last known snapshot instead of starting a second refresh.
    """
    account = _validate_account(account)

    with guard.run(f"portfolio:{normalize_id(account)}") as acquired:
        if acquired:
            return service.build_snapshot(account)

    cached = service.last_snapshot(account)
    if cached is None:
        raise HTTPException(status_code=409, detail="Portfolio refresh already in progress")
    return cached


@router.get("/{account}/history", response_model=LedgerHistory)
def get_history(account: str, service: PortfolioService = Depends(get_portfolio_service)):
    """Reconciled transaction history of an account, newest first."""
    return service.history(_validate_account(account))


@router.post("/{account}/pending", response_model=LedgerEntry, status_code=201)
def record_pending(
    account: str,
    entry: LedgerEntry,
    service: PortfolioService = Depends(get_portfolio_service),
):
    """Record a submitted transaction until the indexer confirms it."""
    return service.record_pending(_validate_account(account), entry)
