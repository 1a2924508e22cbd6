"""
Portfolio service.

Builds the full portfolio snapshot of an account: reconciled history, open
positions verified against live chain balances and redeem quotes, cost-basis
PnL, category exposure, sentiment and the equity curve. Every snapshot is
recomputed from scratch; the last good one is cached so an indexer outage
serves previously known data flagged stale. The indexer's own PnL figures,
when it reports them, are carried alongside and preferred for display.
"""
from typing import Any, Dict, List, Optional
import logging
import time

from market_engine.config import settings
from market_engine.constants import LINEAR_CURVE_ID
from market_engine.exceptions import ChainReadError
from market_engine.schemas.market import EntityMetadata
from market_engine.schemas.portfolio import IndexerPnL, PortfolioSnapshot, PositionView
from market_engine.schemas.transaction import LedgerEntry, LedgerHistory
from market_engine.services.cache import CacheService
from market_engine.services.chain_reader import ChainReader
from market_engine.services.graphql_client import GraphQLClient
from market_engine.services.identifiers import normalize_id, prepare_query_ids, truncate_id
from market_engine.services.ledger_reconciler import LedgerReconciler, parse_timestamp
from market_engine.services.metadata_resolver import MetadataResolver
from market_engine.services.numeric import format_units, safe_parse_units
from market_engine.services.portfolio_metrics import PortfolioMetrics
from market_engine.services.position_valuation import PositionValuationService

logger = logging.getLogger(__name__)

POSITIONS_QUERY = """
query AccountPositions($ids: [String!]!) {
  positions(where: {account: {id: {_in: $ids}}, shares: {_gt: "0"}}, limit: 1000) {
    id shares
    vault {
      term_id curve_id
      term {
        atom { term_id label data image type }
        triple {
          term_id counter_term_id
          subject { label term_id data image type }
          predicate { label }
          object { label term_id data image type }
        }
      }
    }
  }
}
"""

ACCOUNT_PNL_QUERY = """
query AccountPnl($input: GetAccountPnlCurrentInput!) {
  getAccountPnlCurrent(input: $input) {
    account_id timestamp equity_value total_assets_in total_assets_out
    net_invested total_pnl pnl_pct unrealized_pnl
  }
}
"""

PNL_AMOUNT_FIELDS = (
    "equity_value", "total_pnl", "net_invested", "total_assets_in", "total_assets_out", "unrealized_pnl"
)


class PortfolioService:
    """Compose portfolio snapshots for accounts."""

    def __init__(
        self,
        client: Optional[GraphQLClient] = None,
        chain: Optional[ChainReader] = None,
        reconciler: Optional[LedgerReconciler] = None,
        resolver: Optional[MetadataResolver] = None,
        cache: Optional[CacheService] = None,
        sentiment_policy: Any = None,
    ):
        self.client = client or GraphQLClient()
        self.chain = chain or ChainReader()
        self.resolver = resolver or MetadataResolver()
        self.reconciler = reconciler or LedgerReconciler(client=self.client, resolver=self.resolver)
        self.cache = cache or CacheService()
        self.sentiment_policy = sentiment_policy

    @staticmethod
    def _cache_key(account: str) -> str:
        return f"portfolio:snapshot:{normalize_id(account)}"

    def last_snapshot(self, account: str) -> Optional[PortfolioSnapshot]:
        """Last successfully built snapshot of an account, if cached."""
        return self.cache.get_model(self._cache_key(account), PortfolioSnapshot)

    def history(self, account: str) -> LedgerHistory:
        """Reconciled history of an account."""
        return self.reconciler.reconcile(account)

    def record_pending(self, account: str, entry: LedgerEntry) -> LedgerEntry:
        """Record a submitted transaction until the indexer reports it."""
        stored = self.reconciler.pending_cache.append(account, entry)
        logger.info(f"Recorded pending transaction {stored.id} for {account}")
        return stored

    def fetch_positions(self, account: str) -> Optional[List[Dict[str, Any]]]:
        """Indexed positions with a non-zero balance; None when the indexer fails."""
        data = self.client.execute(POSITIONS_QUERY, {"ids": prepare_query_ids(account)})
        if data is None:
            return None
        return [p for p in data.get("positions") or [] if isinstance(p, dict)]

    def fetch_indexer_pnl(self, account: str) -> Optional[IndexerPnL]:
        """
        Account PnL as computed by the indexer.

        Amounts arrive in base units and are converted to display units;
        fields the indexer leaves out stay None.

        Args:
            account: Account address

        Returns:
            IndexerPnL, or None when the indexer fails or reports nothing
        """
        data = self.client.execute(ACCOUNT_PNL_QUERY, {"input": {"account_id": normalize_id(account)}})
        raw = (data or {}).get("getAccountPnlCurrent")
        if not isinstance(raw, dict):
            return None

        amounts = {
            field: safe_parse_units(raw[field])
            for field in PNL_AMOUNT_FIELDS
            if raw.get(field) not in (None, "")
        }
        try:
            pnl_pct = float(raw["pnl_pct"]) if raw.get("pnl_pct") not in (None, "") else None
        except (TypeError, ValueError):
            pnl_pct = None

        return IndexerPnL(
            pnl_pct=pnl_pct,
            timestamp=parse_timestamp(raw["timestamp"]) if raw.get("timestamp") else None,
            **amounts
        )

    def _metadata(self, term: Dict[str, Any], term_id: str) -> EntityMetadata:
        triple = term.get("triple")
        atom = term.get("atom")
        if isinstance(triple, dict):
            return self.resolver.resolve_claim(triple, term_id)
        if isinstance(atom, dict):
            return self.resolver.resolve_atom(atom, term_id)
        return EntityMetadata(label=truncate_id(term_id))

    def value_position(
        self,
        account: str,
        raw: Dict[str, Any],
        history: List[LedgerEntry],
        now_ms: int
    ) -> Optional[PositionView]:
        """
        Value one indexed position against live chain state.

        Args:
            account: Holder address
            raw: Indexed position record
            history: Reconciled account history
            now_ms: Snapshot time

        Returns:
            PositionView, or None when the live balance is dust

        Raises:
            ChainReadError: When the live balance or quote cannot be read
        """
        vault = raw.get("vault") or {}
        term_id = vault.get("term_id")
        if not term_id:
            return None

        dust = settings.dust_threshold
        if safe_parse_units(raw.get("shares")) <= dust:
            return None

        try:
            curve_id = int(vault.get("curve_id") or LINEAR_CURVE_ID)
        except (TypeError, ValueError):
            curve_id = LINEAR_CURVE_ID

        live_shares = self.chain.get_shares(account, term_id, curve_id)
        if live_shares is None:
            raise ChainReadError(f"No live balance for {term_id} (curve {curve_id})")
        shares = format_units(live_shares)
        if shares <= dust:
            logger.debug(f"Skipping closed position {term_id} (curve {curve_id}) for {account}")
            return None

        quote = self.chain.preview_redeem(live_shares, term_id, curve_id)
        if quote is None:
            raise ChainReadError(f"No redeem quote for {term_id} (curve {curve_id})")
        value = format_units(quote)
        valuation = PositionValuationService.calculate_position_pnl(shares, value, history, term_id, curve_id)
        meta = self._metadata(vault.get("term") or {}, term_id)

        return PositionView(
            id=normalize_id(term_id),
            curve_id=curve_id,
            shares=shares,
            value=value,
            profit=valuation.profit,
            percent_return=valuation.percent_return,
            average_entry_price=valuation.average_entry_price,
            cost_basis=valuation.cost_basis,
            label=meta.label,
            image=meta.image,
            type=meta.type,
            category=PortfolioMetrics.categorize(meta.label, meta.type),
            first_deposit_timestamp=PositionValuationService.first_deposit_timestamp(history, term_id) or now_ms,
        )

    def build_snapshot(self, account: str, now_ms: int = None) -> PortfolioSnapshot:
        """
        Recompute the portfolio snapshot of an account.

        Args:
            account: Account address
            now_ms: Snapshot time (defaults to the current time)

        Returns:
            PortfolioSnapshot; the last known snapshot flagged stale when the
            indexer cannot be read
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

        history = self.history(account)
        raw_positions = self.fetch_positions(account)
        positions_missing = raw_positions is None

        if positions_missing:
            cached = self.last_snapshot(account)
            if cached is not None:
                logger.warning(f"Positions unavailable for {account}, serving last known snapshot")
                return cached.model_copy(update={"stale": True})
            logger.warning(f"Positions unavailable for {account} and no snapshot cached")
            raw_positions = []

        positions = []
        chain_failures = 0
        for raw in raw_positions:
            try:
                position = self.value_position(account, raw, history.entries, now_ms)
            except ChainReadError as e:
                logger.warning(f"Live chain read failed for {account}: {e}")
                chain_failures += 1
                continue
            if position is not None:
                positions.append(position)

        if chain_failures:
            cached = self.last_snapshot(account)
            if cached is not None:
                logger.warning(f"Chain unavailable for {account}, serving last known snapshot")
                return cached.model_copy(update={"stale": True})

        total_value = sum(p.value for p in positions)
        total_profit = sum(p.profit for p in positions)
        stale = history.stale or positions_missing or chain_failures > 0
        indexer_pnl = None if positions_missing else self.fetch_indexer_pnl(account)

        snapshot = PortfolioSnapshot(
            account=account,
            total_value=total_value,
            total_profit=total_profit,
            positions=positions,
            history=history.entries,
            equity_curve=PortfolioMetrics.equity_curve(total_value, history.entries, now_ms),
            exposure=PortfolioMetrics.category_exposure(positions),
            sentiment=PortfolioMetrics.sentiment_bias(history.entries, self.sentiment_policy),
            indexer_pnl=indexer_pnl,
            reported_value=(
                indexer_pnl.equity_value
                if indexer_pnl is not None and indexer_pnl.equity_value is not None else total_value
            ),
            reported_profit=(
                indexer_pnl.total_pnl
                if indexer_pnl is not None and indexer_pnl.total_pnl is not None else total_profit
            ),
            stale=stale,
            refreshed_at=now_ms,
        )

        if not snapshot.stale:
            self.cache.set_model(self._cache_key(account), snapshot)
        logger.info(
            f"Portfolio snapshot for {account}: {len(positions)} positions, "
            f"value {total_value:.6f}, profit {total_profit:.6f}"
        )
        return snapshot
