"""
Pydantic schemas for the emitted data contract.
"""
from market_engine.schemas.market import (
    EntityType,
    MarketCategory,
    Link,
    CreatorRef,
    VaultSnapshot,
    VaultAggregate,
    EntityMetadata,
    EntitySummary,
    EntityView,
    MarketPage,
    VolatilityBand,
    IndexData,
    ActivityEventType,
    ActivityEvent,
    ActivityPage,
    Holder,
    HolderList,
    NetworkStats,
)
from market_engine.schemas.transaction import (
    TransactionType,
    EntrySource,
    LedgerEntry,
    LedgerHistory,
)
from market_engine.schemas.portfolio import (
    PositionValuation,
    RealizedPnL,
    PositionView,
    CategoryWeight,
    SentimentBias,
    EquityPoint,
    IndexerPnL,
    PortfolioSnapshot,
)

__all__ = [
    "EntityType",
    "MarketCategory",
    "Link",
    "CreatorRef",
    "VaultSnapshot",
    "VaultAggregate",
    "EntityMetadata",
    "EntitySummary",
    "EntityView",
    "MarketPage",
    "VolatilityBand",
    "IndexData",
    "ActivityEventType",
    "ActivityEvent",
    "ActivityPage",
    "Holder",
    "HolderList",
    "NetworkStats",
    "TransactionType",
    "EntrySource",
    "LedgerEntry",
    "LedgerHistory",
    "PositionValuation",
    "RealizedPnL",
    "PositionView",
    "CategoryWeight",
    "SentimentBias",
    "EquityPoint",
    "IndexerPnL",
    "PortfolioSnapshot",
]
