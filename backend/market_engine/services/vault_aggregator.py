"""
Vault aggregation service.

An entity can be backed by several bonding curves in parallel, each with its
own vault row. This service merges those rows into one valuation per entity:
exact integer totals, a blended market cap (sum of shares x price per curve,
not price of the sum) and a representative spot price.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union
import logging
import math

from pydantic import ValidationError

from market_engine.constants import LINEAR_CURVE_ID, PRICE_FLOOR
from market_engine.schemas.market import VaultAggregate, VaultSnapshot
from market_engine.services.identifiers import normalize_id
from market_engine.services.numeric import format_units, safe_parse_units

logger = logging.getLogger(__name__)


def calculate_agent_price(assets: Any, shares: Any, current_share_price: Any = None) -> float:
    """
    Spot price of a single vault.

    Uses the curve-reported price when present and non-zero, otherwise
    assets / shares, otherwise the price floor.

    Args:
        assets: Total assets (any encoding accepted by safe_parse_units)
        shares: Total shares
        current_share_price: Reported spot price

    Returns:
        Price in display units
    """
    reported = safe_parse_units(current_share_price)
    if reported > 0:
        return reported

    assets_num = safe_parse_units(assets)
    shares_num = safe_parse_units(shares)
    if shares_num <= 0:
        return PRICE_FLOOR
    return assets_num / shares_num


def calculate_market_cap(assets: Any, shares: Any, current_share_price: Any = None) -> float:
    """
    Market cap of a single vault row.

    An already-scaled decimal string is taken as the market cap itself;
    otherwise shares x spot price.
    """
    if isinstance(assets, str) and "." in assets:
        return safe_parse_units(assets)

    market_cap = safe_parse_units(shares) * calculate_agent_price(assets, shares, current_share_price)
    return market_cap if math.isfinite(market_cap) else 0.0


class _CurveGroup:
    """Running totals for one entity while snapshots are folded in."""

    def __init__(self, term_id: str):
        self.term_id = term_id
        self.total_assets = 0
        self.total_shares = 0
        self.market_cap = 0.0
        self.position_count = 0
        self.curve_ids: List[int] = []
        self.linear_price: Optional[float] = None
        self.first_price: Optional[float] = None


class VaultAggregator:
    """Merge per-curve vault snapshots into per-entity valuations."""

    @staticmethod
    def _coerce(snapshot: Union[VaultSnapshot, Dict[str, Any]]) -> Optional[VaultSnapshot]:
        if isinstance(snapshot, VaultSnapshot):
            return snapshot
        try:
            return VaultSnapshot.model_validate(snapshot)
        except ValidationError as e:
            logger.warning(f"Skipping malformed vault snapshot: {e.error_count()} validation error(s)")
            return None

    @staticmethod
    def curve_price(snapshot: VaultSnapshot) -> float:
        """Per-share price of one curve (reported, derived or floor)."""
        if snapshot.current_share_price > 0:
            return format_units(snapshot.current_share_price)
        if snapshot.total_shares > 0:
            return float(Decimal(snapshot.total_assets) / Decimal(snapshot.total_shares))
        return PRICE_FLOOR

    @staticmethod
    def _has_real_price(snapshot: VaultSnapshot, price: float) -> bool:
        """A price counts as available only if it was reported or derived and is non-zero."""
        return price > 0 and (snapshot.current_share_price > 0 or snapshot.total_shares > 0)

    @classmethod
    def aggregate(
        cls,
        snapshots: Iterable[Union[VaultSnapshot, Dict[str, Any]]]
    ) -> List[VaultAggregate]:
        """
        Group snapshots by entity id (case-insensitive) and sum them.

        Args:
            snapshots: Vault rows, possibly several curves per entity

        Returns:
            One VaultAggregate per entity, in first-seen order
        """
        groups: Dict[str, _CurveGroup] = {}

        for raw in snapshots or []:
            snapshot = cls._coerce(raw)
            if snapshot is None:
                continue

            key = normalize_id(snapshot.term_id)
            if not key:
                continue

            group = groups.get(key)
            if group is None:
                group = groups[key] = _CurveGroup(snapshot.term_id)

            price = cls.curve_price(snapshot)

            group.total_assets += snapshot.total_assets
            group.total_shares += snapshot.total_shares
            group.market_cap += format_units(snapshot.total_shares) * price
            group.position_count += snapshot.position_count
            if snapshot.curve_id is not None and snapshot.curve_id not in group.curve_ids:
                group.curve_ids.append(snapshot.curve_id)

            if cls._has_real_price(snapshot, price):
                if snapshot.curve_id == LINEAR_CURVE_ID and group.linear_price is None:
                    group.linear_price = price
                if group.first_price is None:
                    group.first_price = price

        return [cls._finalize(group) for group in groups.values()]

    @staticmethod
    def _finalize(group: _CurveGroup) -> VaultAggregate:
        if group.total_shares <= 0:
            representative = PRICE_FLOOR
        elif group.linear_price is not None:
            representative = group.linear_price
        elif group.first_price is not None:
            representative = group.first_price
        else:
            representative = PRICE_FLOOR

        return VaultAggregate(
            term_id=group.term_id,
            total_assets=group.total_assets,
            total_shares=group.total_shares,
            value=format_units(group.total_assets),
            shares=format_units(group.total_shares),
            market_cap=group.market_cap if math.isfinite(group.market_cap) else 0.0,
            representative_price=representative,
            position_count=group.position_count,
            curve_ids=group.curve_ids,
            has_linear=LINEAR_CURVE_ID in group.curve_ids,
        )

    @classmethod
    def aggregate_by_id(
        cls,
        snapshots: Iterable[Union[VaultSnapshot, Dict[str, Any]]]
    ) -> Dict[str, VaultAggregate]:
        """Same as aggregate(), keyed by normalized entity id."""
        return {normalize_id(a.term_id): a for a in cls.aggregate(snapshots)}
