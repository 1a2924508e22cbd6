"""
Market schemas - vault snapshots, aggregated valuations and normalized entity views.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any
import enum

from market_engine.services.numeric import to_base_units


class EntityType(str, enum.Enum):
    """Entity type as shown to the presentation layer."""
    ATOM = "ATOM"
    CLAIM = "CLAIM"
    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    THING = "THING"
    ACCOUNT = "ACCOUNT"

    @classmethod
    def parse(cls, value: Any) -> "EntityType":
        """Map a raw indexer type string to an EntityType, defaulting to ATOM."""
        if isinstance(value, cls):
            return value
        if not value or not isinstance(value, str):
            return cls.ATOM
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.ATOM


class MarketCategory(str, enum.Enum):
    """Keyword-derived market category used for exposure breakdowns."""
    AI = "AI"
    PERSON = "PERSON"
    PROTOCOL = "PROTOCOL"
    MEME = "MEME"
    CREATOR = "CREATOR"
    INVESTOR = "INVESTOR"
    UNKNOWN = "UNKNOWN"


class Link(BaseModel):
    """External link attached to an entity."""
    label: str = ""
    url: str


class CreatorRef(BaseModel):
    """Reference to the account that created an entity."""
    id: str
    label: Optional[str] = None
    image: Optional[str] = None


class VaultSnapshot(BaseModel):
    """
    One vault row per (entity, curve) pair as returned by the indexer.

    Amounts are fixed-point integers in base units (18 decimals). Malformed or
    negative inputs are coerced to zero.
    """
    term_id: str
    curve_id: Optional[int] = None
    total_assets: int = 0
    total_shares: int = 0
    current_share_price: int = 0
    position_count: int = 0

    @field_validator("total_assets", "total_shares", "current_share_price", mode="before")
    @classmethod
    def coerce_base_units(cls, v):
        """Accept decimal strings, wei strings, ints or None."""
        return to_base_units(v)

    @field_validator("curve_id", mode="before")
    @classmethod
    def coerce_curve_id(cls, v):
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @field_validator("position_count", mode="before")
    @classmethod
    def coerce_position_count(cls, v):
        try:
            return max(int(v or 0), 0)
        except (TypeError, ValueError):
            return 0


class VaultAggregate(BaseModel):
    """Valuation of one entity summed across all of its curves."""
    term_id: str
    total_assets: int = Field(..., description="Summed deposited value in base units")
    total_shares: int = Field(..., description="Summed issued shares in base units")
    value: float = Field(..., description="Total value in display units")
    shares: float = Field(..., description="Total shares in display units")
    market_cap: float = Field(..., description="Sum over curves of shares x curve price")
    representative_price: float = Field(..., description="Spot price shown for the entity (never zero)")
    position_count: int = 0
    curve_ids: List[int] = Field(default_factory=list)
    has_linear: bool = False


class EntityMetadata(BaseModel):
    """Normalized display metadata for a raw atom or triple record."""
    label: str
    description: str = ""
    type: EntityType = EntityType.ATOM
    image: Optional[str] = None
    links: List[Link] = Field(default_factory=list)
    is_opposition: bool = False


class EntitySummary(BaseModel):
    """Lightweight entity reference used by search results."""
    id: str
    label: str
    image: Optional[str] = None
    type: EntityType = EntityType.ATOM


class EntityView(BaseModel):
    """Normalized entity record emitted to the presentation layer."""
    id: str
    counter_term_id: Optional[str] = None
    label: str
    description: str = ""
    image: Optional[str] = None
    type: EntityType = EntityType.ATOM
    links: List[Link] = Field(default_factory=list)
    creator: Optional[CreatorRef] = None
    total_assets: str = "0"
    total_shares: str = "0"
    value: float = 0.0
    market_cap: float = 0.0
    spot_price: float = 0.0
    position_count: int = 0
    trust_score: float = 0.0
    volatility: float = 0.0
    category: MarketCategory = MarketCategory.UNKNOWN
    system_verified: bool = False

    class Config:
        """Pydantic configuration."""
        json_schema_extra = {
            "example": {
                "id": "0x8f2a...",
                "counter_term_id": None,
                "label": "Acme",
                "description": "Acme protocol",
                "image": "ipfs://...",
                "type": "ORGANIZATION",
                "links": [],
                "creator": {"id": "0xabc...", "label": "alice.eth"},
                "total_assets": "2500000000000000000",
                "total_shares": "2000000000000000000",
                "value": 2.5,
                "market_cap": 2.5,
                "spot_price": 1.25,
                "position_count": 4,
                "trust_score": 22.7,
                "volatility": 89.0,
                "category": "PROTOCOL",
                "system_verified": True
            }
        }


class MarketPage(BaseModel):
    """One page of the market listing."""
    items: List[EntityView] = Field(default_factory=list)
    offset: int = 0
    has_more: bool = False
    stale: bool = False


class VolatilityBand(str, enum.Enum):
    """Coarse volatility band of a sector index."""
    LOW_STABLE = "LOW_STABLE"
    MODERATE = "MODERATE"
    HIGH_FLUX = "HIGH_FLUX"


class IndexData(BaseModel):
    """Sector index computed over a set of entities."""
    value: float
    change: float
    volatility: VolatilityBand
    volatility_level: int
    forecast: str


class ActivityEventType(str, enum.Enum):
    """Indexer event kinds shown in the network activity feed."""
    DEPOSITED = "Deposited"
    REDEEMED = "Redeemed"
    ATOM_CREATED = "AtomCreated"
    TRIPLE_CREATED = "TripleCreated"


class ActivityEvent(BaseModel):
    """One network-wide event with its sender and target entity."""
    id: str = Field(..., min_length=1, description="Transaction hash, else indexer event id")
    type: ActivityEventType
    timestamp: int = Field(..., description="Epoch milliseconds")
    sender: Optional[CreatorRef] = None
    target: Optional[EntitySummary] = None
    vault_id: str = "0x"
    curve_id: Optional[int] = None
    assets: str = "0"
    shares: str = "0"

    @field_validator("curve_id", mode="before")
    @classmethod
    def coerce_curve_id(cls, v):
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None


class ActivityPage(BaseModel):
    """One page of the network activity feed."""
    items: List[ActivityEvent] = Field(default_factory=list)
    offset: int = 0
    has_more: bool = False
    stale: bool = False


class Holder(BaseModel):
    """Account holding shares in an entity's vaults."""
    account: CreatorRef
    shares: float = Field(..., description="Shares in display units")


class HolderList(BaseModel):
    """Largest holders of an entity, biggest first."""
    holders: List[Holder] = Field(default_factory=list)
    total_count: int = 0
    stale: bool = False


class NetworkStats(BaseModel):
    """Network-wide totals."""
    total_assets: str = Field("0", description="Value locked across all vaults in base units")
    tvl: float = Field(0.0, description="Value locked in display units")
    atoms: int = 0
    signals: int = Field(0, description="Number of triples (claims)")
    stale: bool = False
