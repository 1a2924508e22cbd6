"""
Transaction schemas - ledger entries and reconciled account history.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
import enum


class TransactionType(str, enum.Enum):
    """
    Direction of a ledger entry.

    DEPOSIT acquires shares in a vault, REDEEM liquidates them.
    """
    DEPOSIT = "DEPOSIT"
    REDEEM = "REDEEM"


class EntrySource(str, enum.Enum):
    """Where a ledger entry came from."""
    REMOTE = "REMOTE"
    PENDING = "PENDING"


class LedgerEntry(BaseModel):
    """
    One transaction in an account history.

    `id` is the natural key: the on-chain transaction hash when known,
    otherwise the indexer event id or a locally generated pending key.
    `assets` and `shares` keep the raw numeric encoding (base-unit integer
    strings or already scaled decimals) and go through the numeric
    normalizer when used.
    """
    id: str = Field(..., min_length=1, description="Natural key (transaction hash or pending key)")
    type: TransactionType = TransactionType.DEPOSIT
    assets: str = Field("0", description="Value moved, raw encoding")
    shares: str = Field("0", description="Shares moved, raw encoding")
    timestamp: int = Field(0, description="Epoch milliseconds")
    vault_id: str = Field("0x", description="Target entity identifier")
    curve_id: Optional[int] = None
    asset_label: Optional[str] = None
    source: EntrySource = EntrySource.REMOTE

    @field_validator("assets", "shares", mode="before")
    @classmethod
    def stringify_amount(cls, v):
        """Keep amounts as strings whatever the wire type."""
        if v is None:
            return "0"
        return str(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v):
        try:
            return int(v or 0)
        except (TypeError, ValueError):
            return 0

    @field_validator("curve_id", mode="before")
    @classmethod
    def coerce_curve_id(cls, v):
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @property
    def natural_key(self) -> str:
        """Lower-cased key used for cross-source deduplication."""
        return self.id.lower()

    class Config:
        """Pydantic configuration."""
        json_schema_extra = {
            "example": {
                "id": "0x5c1e...",
                "type": "DEPOSIT",
                "assets": "100000000000000000",
                "shares": "95000000000000000",
                "timestamp": 1735689600000,
                "vault_id": "0x8f2a...",
                "curve_id": 1,
                "asset_label": "Acme",
                "source": "REMOTE"
            }
        }


class LedgerHistory(BaseModel):
    """Reconciled history of one account, newest first."""
    account: str
    entries: List[LedgerEntry] = Field(default_factory=list)
    pending_count: int = 0
    stale: bool = Field(False, description="True when the remote history could not be fetched")
