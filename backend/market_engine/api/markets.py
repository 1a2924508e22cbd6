"""Market API endpoints."""
from functools import lru_cache
from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from market_engine.config import settings
from market_engine.schemas.market import (
    ActivityPage, EntitySummary, EntityView, HolderList, IndexData, MarketPage, NetworkStats
)
from market_engine.schemas.transaction import LedgerEntry
from market_engine.services.market_service import MarketService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/markets", tags=["markets"])

MAX_INDEX_IDS = 100


@lru_cache()
def get_market_service() -> MarketService:
    """Shared market service instance."""
    return MarketService()


def _validate_term_id(term_id: str) -> str:
    term_id = term_id.strip()
    if not term_id.lower().startswith("0x") or len(term_id) < 3:
        raise HTTPException(status_code=400, detail=f"Invalid term id: {term_id}")
    return term_id


@router.get("", response_model=MarketPage)
def list_markets(
    limit: int = Query(None, ge=1, le=200, description="Page size"),
    offset: int = Query(0, ge=0, description="Number of vault rows to skip"),
    service: MarketService = Depends(get_market_service),
):
    """
    List markets ordered by total value.

    Pages are `limit` vault rows long; `has_more` is true when the page was full.
    """
    return service.list_markets(limit=limit or settings.market_page_size, offset=offset)


@router.get("/search", response_model=List[EntitySummary])
def search_markets(
    q: str = Query(..., min_length=1, description="Label or id fragment"),
    service: MarketService = Depends(get_market_service),
):
    """Search entities by label or id."""
    return service.search(q)


@router.get("/index", response_model=IndexData)
def sector_index(
    ids: str = Query("", description="Comma-separated entity ids"),
    service: MarketService = Depends(get_market_service),
):
    """Sector index over a set of entities."""
    term_ids = [i.strip() for i in ids.split(",") if i.strip()]
    if len(term_ids) > MAX_INDEX_IDS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_INDEX_IDS} ids per index")
    return service.sector_index([_validate_term_id(i) for i in term_ids])


@router.get("/activity", response_model=ActivityPage)
def global_activity(
    limit: int = Query(None, ge=1, le=200, description="Page size"),
    offset: int = Query(0, ge=0, description="Number of events to skip"),
    service: MarketService = Depends(get_market_service),
):
    """Network-wide activity feed, newest first."""
    return service.global_activity(limit=limit or settings.market_page_size, offset=offset)


@router.get("/stats", response_model=NetworkStats)
def network_stats(service: MarketService = Depends(get_market_service)):
    """Network totals: value locked, atoms and signals."""
    return service.network_stats()


@router.get("/{term_id}", response_model=EntityView)
def get_market(term_id: str, service: MarketService = Depends(get_market_service)):
    """Entity detail view."""
    return service.get_entity(_validate_term_id(term_id))


@router.get("/{term_id}/activity", response_model=List[LedgerEntry])
def get_market_activity(term_id: str, service: MarketService = Depends(get_market_service)):
    """Latest deposits and redemptions of an entity."""
    return service.market_activity(_validate_term_id(term_id))


@router.get("/{term_id}/holders", response_model=HolderList)
def get_market_holders(term_id: str, service: MarketService = Depends(get_market_service)):
    """Largest holders of an entity."""
    return service.vault_holders(_validate_term_id(term_id))
