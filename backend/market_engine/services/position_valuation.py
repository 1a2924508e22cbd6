"""
Position valuation service.

Cost-basis profit and loss for held positions, derived from the reconciled
account history and the live redeem quote.
"""
from typing import List, Optional, Sequence, Tuple
import logging

from market_engine.schemas.portfolio import PositionValuation, RealizedPnL
from market_engine.schemas.transaction import LedgerEntry, TransactionType
from market_engine.services.identifiers import ids_equal
from market_engine.services.numeric import safe_parse_units

logger = logging.getLogger(__name__)


class PositionValuationService:
    """Unrealized and realized PnL for vault positions."""

    @staticmethod
    def _entries_for(
        history: Sequence[LedgerEntry],
        term_id: str,
        curve_id: Optional[int] = None
    ) -> List[LedgerEntry]:
        """History entries of one entity, narrowed to one curve when both sides know it."""
        return [
            entry for entry in history
            if ids_equal(entry.vault_id, term_id)
            and (curve_id is None or entry.curve_id is None or entry.curve_id == curve_id)
        ]

    @staticmethod
    def _acquisitions(entries: Sequence[LedgerEntry], require_positive: bool = True) -> Tuple[float, float]:
        """Total spent and total shares bought over the deposit entries."""
        total_spent = 0.0
        total_shares = 0.0
        for entry in entries:
            if entry.type != TransactionType.DEPOSIT:
                continue
            assets = safe_parse_units(entry.assets)
            shares = safe_parse_units(entry.shares)
            if require_positive and (assets <= 0 or shares <= 0):
                continue
            total_spent += assets
            total_shares += shares
        return total_spent, total_shares

    @classmethod
    def calculate_position_pnl(
        cls,
        shares_held: float,
        current_value: float,
        history: Sequence[LedgerEntry],
        term_id: str,
        curve_id: Optional[int] = None
    ) -> PositionValuation:
        """
        Unrealized PnL of a held position.

        Args:
            shares_held: Live share balance in display units
            current_value: Live redeem quote for all held shares
            history: Reconciled account history
            term_id: Entity identifier (case-insensitive)
            curve_id: Curve of the position; entries on other curves are ignored

        Returns:
            PositionValuation; with no recorded acquisition the position is
            valued at the quote price with zero profit
        """
        valuation_price = current_value / shares_held if shares_held > 0 else 0.0

        entries = cls._entries_for(history, term_id, curve_id)
        total_spent, total_bought = cls._acquisitions(entries)

        if total_bought <= 0:
            return PositionValuation(
                profit=0.0,
                percent_return=0.0,
                average_entry_price=valuation_price,
                cost_basis=shares_held * valuation_price,
                current_value=current_value,
            )

        average_entry_price = total_spent / total_bought
        cost_basis = shares_held * average_entry_price
        value = shares_held * valuation_price
        profit = value - cost_basis
        percent_return = (profit / cost_basis) * 100 if cost_basis > 0 else 0.0

        return PositionValuation(
            profit=profit,
            percent_return=percent_return,
            average_entry_price=average_entry_price,
            cost_basis=cost_basis,
            current_value=value,
        )

    @classmethod
    def calculate_realized_pnl(
        cls,
        shares_sold: float,
        assets_received: float,
        history: Sequence[LedgerEntry],
        term_id: str
    ) -> RealizedPnL:
        """
        Realized PnL of one liquidation against the average entry price.

        Args:
            shares_sold: Shares redeemed
            assets_received: Assets paid out for them
            history: Account history holding the entity's deposits
            term_id: Entity identifier

        Returns:
            RealizedPnL; all zeros when no deposit is recorded
        """
        entries = cls._entries_for(history, term_id)
        total_spent, total_bought = cls._acquisitions(entries, require_positive=False)

        if total_bought <= 0 or shares_sold <= 0:
            return RealizedPnL(profit=0.0, percent_return=0.0, entry_price=0.0, exit_price=0.0)

        average_entry_price = total_spent / total_bought
        cost_basis = shares_sold * average_entry_price
        profit = assets_received - cost_basis

        return RealizedPnL(
            profit=profit,
            percent_return=(profit / cost_basis) * 100 if cost_basis > 0 else 0.0,
            entry_price=average_entry_price,
            exit_price=assets_received / shares_sold,
        )

    @staticmethod
    def first_deposit_timestamp(history: Sequence[LedgerEntry], term_id: str) -> int:
        """Timestamp (ms) of the earliest deposit into an entity, 0 if none."""
        timestamps = [
            entry.timestamp for entry in history
            if entry.type == TransactionType.DEPOSIT and ids_equal(entry.vault_id, term_id)
        ]
        return min(timestamps) if timestamps else 0
