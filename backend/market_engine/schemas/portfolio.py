"""
Portfolio schemas - position valuations and portfolio-level summaries.
"""
from pydantic import BaseModel, Field
from typing import Optional, List

from market_engine.schemas.market import EntityType, MarketCategory
from market_engine.schemas.transaction import LedgerEntry


class PositionValuation(BaseModel):
    """Cost-basis valuation of one held position."""
    profit: float = Field(..., description="Unrealized profit (current value - cost basis)")
    percent_return: float = Field(..., description="Profit / cost basis x 100")
    average_entry_price: float = Field(..., description="Weighted average entry price")
    cost_basis: float = Field(..., description="Held shares x average entry price")
    current_value: float = Field(0.0, description="Held shares x live quote price")


class RealizedPnL(BaseModel):
    """Realized result of a single liquidation."""
    profit: float
    percent_return: float
    entry_price: float
    exit_price: float


class PositionView(BaseModel):
    """Open position as shown in the portfolio."""
    id: str
    curve_id: int
    shares: float
    value: float
    profit: float = 0.0
    percent_return: float = 0.0
    average_entry_price: float = 0.0
    cost_basis: float = 0.0
    label: str
    image: Optional[str] = None
    type: EntityType = EntityType.ATOM
    category: MarketCategory = MarketCategory.UNKNOWN
    first_deposit_timestamp: int = 0


class CategoryWeight(BaseModel):
    """Share of portfolio value held in one market category (percent)."""
    name: MarketCategory
    value: float


class SentimentBias(BaseModel):
    """Trust / distrust split shown for an account history (percent)."""
    trust: float = 50.0
    distrust: float = 50.0


class EquityPoint(BaseModel):
    """One point of the reconstructed equity curve."""
    timestamp: int
    value: float


class IndexerPnL(BaseModel):
    """Account PnL as computed by the indexer (display units)."""
    equity_value: Optional[float] = None
    total_pnl: Optional[float] = None
    net_invested: Optional[float] = None
    total_assets_in: Optional[float] = None
    total_assets_out: Optional[float] = None
    unrealized_pnl: Optional[float] = None
    pnl_pct: Optional[float] = None
    timestamp: Optional[int] = None


class PortfolioSnapshot(BaseModel):
    """Full portfolio view of one account, recomputed on every refresh."""
    account: str
    total_value: float = 0.0
    total_profit: float = 0.0
    positions: List[PositionView] = Field(default_factory=list)
    history: List[LedgerEntry] = Field(default_factory=list)
    equity_curve: List[EquityPoint] = Field(default_factory=list)
    exposure: List[CategoryWeight] = Field(default_factory=list)
    sentiment: SentimentBias = Field(default_factory=SentimentBias)
    indexer_pnl: Optional[IndexerPnL] = None
    reported_value: float = Field(0.0, description="Indexer equity when reported, else total_value")
    reported_profit: float = Field(0.0, description="Indexer total PnL when reported, else total_profit")
    stale: bool = False
    refreshed_at: int = 0

    class Config:
        """Pydantic configuration."""
        json_schema_extra = {
            "example": {
                "account": "0xabc...",
                "total_value": 1.2,
                "total_profit": 0.2,
                "positions": [],
                "history": [],
                "equity_curve": [
                    {"timestamp": 1735603200000, "value": 1.0},
                    {"timestamp": 1735689600000, "value": 1.2}
                ],
                "exposure": [{"name": "PROTOCOL", "value": 100.0}],
                "sentiment": {"trust": 92.1, "distrust": 7.9},
                "indexer_pnl": None,
                "reported_value": 1.2,
                "reported_profit": 0.2,
                "stale": False,
                "refreshed_at": 1735689600000
            }
        }
