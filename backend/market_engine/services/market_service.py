"""
Market service.

Composes the market listing, entity detail, search, activity, holder and
network views from indexer queries, the vault aggregator and the metadata
resolver. Remote failures degrade to the last-known data (flagged stale) or
to placeholder views; nothing here raises on bad remote data.
"""
from typing import Any, Dict, Iterable, List, Optional
import logging

from market_engine.config import settings
from market_engine.schemas.market import (
    ActivityEvent, ActivityEventType, ActivityPage, CreatorRef, EntitySummary, EntityType,
    EntityView, Holder, HolderList, IndexData, MarketPage, NetworkStats, VaultAggregate
)
from market_engine.schemas.transaction import LedgerEntry, TransactionType
from market_engine.services.cache import CacheService
from market_engine.services.graphql_client import GraphQLClient
from market_engine.services.identifiers import normalize_id, prepare_query_ids
from market_engine.services.ledger_reconciler import parse_timestamp
from market_engine.services.metadata_resolver import MetadataResolver
from market_engine.services.numeric import safe_parse_units, to_base_units
from market_engine.services.portfolio_metrics import PortfolioMetrics
from market_engine.services.vault_aggregator import VaultAggregator

logger = logging.getLogger(__name__)

VAULT_FIELDS = "term_id total_assets total_shares current_share_price curve_id position_count"
ATOM_FIELDS = (
    "term_id label data image type creator { id label image } "
    "value { person { name } organization { name } thing { name } account { label } }"
)
TRIPLE_FIELDS = (
    "term_id counter_term_id creator { id label image } "
    "subject { label term_id data image type } predicate { label } "
    "object { label term_id data image type }"
)

VAULTS_PAGE_QUERY = f"""
query MarketVaults($limit: Int!, $offset: Int!) {{
  vaults(limit: $limit, offset: $offset, order_by: {{total_assets: desc}}) {{ {VAULT_FIELDS} }}
}}
"""

ENTITY_RECORDS_QUERY = f"""
query EntityRecords($ids: [String!]!) {{
  atoms(where: {{term_id: {{_in: $ids}}}}) {{ {ATOM_FIELDS} }}
  triples(where: {{term_id: {{_in: $ids}}}}) {{ {TRIPLE_FIELDS} }}
  counter_triples: triples(where: {{counter_term_id: {{_in: $ids}}}}) {{ {TRIPLE_FIELDS} }}
}}
"""

ENTITY_DETAIL_QUERY = f"""
query EntityDetail($ids: [String!]!) {{
  vaults(where: {{term_id: {{_in: $ids}}}}) {{ {VAULT_FIELDS} }}
  atoms(where: {{term_id: {{_in: $ids}}}}) {{ {ATOM_FIELDS} }}
  triples(where: {{term_id: {{_in: $ids}}}}) {{ {TRIPLE_FIELDS} }}
  counter_triples: triples(where: {{counter_term_id: {{_in: $ids}}}}) {{ {TRIPLE_FIELDS} }}
}}
"""

SEARCH_QUERY = """
query SearchEntities($term: String!, $limit: Int!) {
  atoms(where: {_or: [{label: {_ilike: $term}}, {term_id: {_ilike: $term}}]}, limit: $limit) {
    term_id label data image type
  }
}
"""

MARKET_ACTIVITY_QUERY = """
query MarketActivity($ids: [String!]!, $limit: Int!) {
  events(
    where: {
      _or: [{atom: {term_id: {_in: $ids}}}, {triple: {term_id: {_in: $ids}}}],
      _and: [{type: {_in: ["Deposited", "Redeemed"]}}]
    },
    order_by: {created_at: desc},
    limit: $limit
  ) {
    id transaction_hash created_at type
    deposit { shares assets_after_fees vault { curve_id } }
    redemption { shares assets vault { curve_id } }
  }
}
"""

ACTOR_FIELDS = "id label image"

GLOBAL_ACTIVITY_QUERY = f"""
query GlobalActivity($limit: Int!, $offset: Int!) {{
  events(limit: $limit, offset: $offset, order_by: {{created_at: desc}}, where: {{
    _and: [
      {{type: {{_in: ["Deposited", "Redeemed", "AtomCreated", "TripleCreated"]}}}},
      {{_not: {{deposit: {{assets_after_fees: {{_eq: "0"}}}}}}}}
    ]
  }}) {{
    id created_at type transaction_hash
    atom {{ term_id label data image type creator {{ {ACTOR_FIELDS} }} }}
    triple {{ {TRIPLE_FIELDS} }}
    deposit {{ assets_after_fees shares sender {{ {ACTOR_FIELDS} }} vault {{ curve_id }} }}
    redemption {{ assets shares sender {{ {ACTOR_FIELDS} }} vault {{ curve_id }} }}
  }}
}}
"""

HOLDERS_QUERY = f"""
query VaultHolders($ids: [String!]!, $limit: Int!) {{
  positions(
    where: {{vault: {{term_id: {{_in: $ids}}}}, shares: {{_gt: "0"}}}},
    order_by: {{shares: desc}},
    limit: $limit
  ) {{
    shares account {{ {ACTOR_FIELDS} }}
  }}
}}
"""

NETWORK_STATS_QUERY = """
query NetworkStats {
  vaults_aggregate { aggregate { sum { total_assets } } }
  atoms_aggregate { aggregate { count } }
  triples_aggregate { aggregate { count } }
}
"""


def _index_records(records: Optional[Iterable[Dict[str, Any]]], key: str = "term_id") -> Dict[str, Dict[str, Any]]:
    """Map raw records by normalized id; the first record for an id wins."""
    indexed: Dict[str, Dict[str, Any]] = {}
    for record in records or []:
        if isinstance(record, dict) and record.get(key):
            indexed.setdefault(normalize_id(record[key]), record)
    return indexed


def _count(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


class MarketService:
    """Read-side market views."""

    def __init__(
        self,
        client: Optional[GraphQLClient] = None,
        resolver: Optional[MetadataResolver] = None,
        cache: Optional[CacheService] = None,
    ):
        self.client = client or GraphQLClient()
        self.resolver = resolver or MetadataResolver()
        self.cache = cache or CacheService()

    def _compose_views(self, aggregates: List[VaultAggregate], data: Dict[str, Any]) -> List[EntityView]:
        atoms = _index_records(data.get("atoms"))
        triples = _index_records(data.get("triples"))
        counter_triples = _index_records(data.get("counter_triples"), key="counter_term_id")

        views = []
        for aggregate in aggregates:
            key = normalize_id(aggregate.term_id)
            views.append(self.resolver.build_entity_view(
                aggregate.term_id,
                aggregate=aggregate,
                atom=atoms.get(key),
                triple=triples.get(key) or counter_triples.get(key),
            ))
        return views

    def list_markets(self, limit: int = None, offset: int = 0) -> MarketPage:
        """
        One page of the market listing, ordered by vault value.

        Args:
            limit: Page size (defaults to settings.market_page_size)
            offset: Number of vault rows to skip

        Returns:
            MarketPage; the last known page flagged stale when the indexer fails
        """
        limit = limit or settings.market_page_size
        cache_key = f"market:page:{limit}:{offset}"

        vault_data = self.client.execute(VAULTS_PAGE_QUERY, {"limit": limit, "offset": offset})
        if vault_data is None:
            return self._stale_page(cache_key, offset)

        rows = vault_data.get("vaults") or []
        if not rows:
            return MarketPage(items=[], offset=offset, has_more=False)

        aggregates = VaultAggregator.aggregate(rows)
        record_data = self.client.execute(ENTITY_RECORDS_QUERY, {"ids": [a.term_id for a in aggregates]})
        records_missing = record_data is None
        if records_missing:
            logger.warning(f"Entity records unavailable for market page at offset {offset}")
            cached = self.cache.get_model(cache_key, MarketPage)
            if cached is not None:
                return cached.model_copy(update={"stale": True})
            record_data = {}

        page = MarketPage(
            items=self._compose_views(aggregates, record_data),
            offset=offset,
            has_more=len(rows) == limit,
            stale=records_missing,
        )
        if not page.stale:
            self.cache.set_model(cache_key, page)
        return page

    def _stale_page(self, cache_key: str, offset: int) -> MarketPage:
        cached = self.cache.get_model(cache_key, MarketPage)
        if cached is not None:
            logger.warning(f"Serving last known market page {cache_key}")
            return cached.model_copy(update={"stale": True})
        logger.warning(f"No market data available for {cache_key}")
        return MarketPage(items=[], offset=offset, has_more=False, stale=True)

    def get_entity(self, term_id: str) -> EntityView:
        """
        Detail view of one entity, queried under all its id variants.

        Args:
            term_id: Entity identifier

        Returns:
            EntityView; label "Unknown" when nothing is indexed under the id,
            label "Offline" when the indexer cannot be reached
        """
        cache_key = f"market:entity:{normalize_id(term_id)}"
        data = self.client.execute(ENTITY_DETAIL_QUERY, {"ids": prepare_query_ids(term_id)})

        if data is None:
            cached = self.cache.get_model(cache_key, EntityView)
            if cached is not None:
                logger.warning(f"Serving last known view of {term_id}")
                return cached
            return EntityView(id=term_id, label="Offline")

        aggregates = VaultAggregator.aggregate(data.get("vaults") or [])
        atoms = data.get("atoms") or []
        triples = data.get("triples") or []
        counter_triples = data.get("counter_triples") or []

        if not aggregates and not atoms and not triples and not counter_triples:
            return EntityView(id=term_id, label="Unknown")

        view = self.resolver.build_entity_view(
            term_id,
            aggregate=aggregates[0] if aggregates else None,
            atom=atoms[0] if atoms else None,
            triple=(triples or counter_triples or [None])[0],
        )
        self.cache.set_model(cache_key, view)
        return view

    def get_entities_by_ids(self, ids: List[str]) -> List[EntityView]:
        """Views of several entities at once (entities without a vault are skipped)."""
        if not ids:
            return []

        query_ids = list(dict.fromkeys(v for term_id in ids for v in prepare_query_ids(term_id)))
        data = self.client.execute(ENTITY_DETAIL_QUERY, {"ids": query_ids})
        if data is None:
            logger.warning(f"Entity views unavailable for {len(ids)} ids")
            return []

        aggregates = VaultAggregator.aggregate(data.get("vaults") or [])
        return self._compose_views(aggregates, data)

    def search(self, term: str) -> List[EntitySummary]:
        """
        Case-insensitive search over atom labels and ids.

        Args:
            term: Free text

        Returns:
            Matching entity summaries (empty for a blank term or on failure)
        """
        term = (term or "").strip()
        if not term:
            return []

        data = self.client.execute(SEARCH_QUERY, {"term": f"%{term}%", "limit": settings.search_limit})
        if data is None:
            return []

        results = []
        for atom in data.get("atoms") or []:
            if not isinstance(atom, dict) or not atom.get("term_id"):
                continue
            meta = self.resolver.resolve_atom(atom)
            results.append(EntitySummary(
                id=atom["term_id"],
                label=meta.label,
                image=atom.get("image") or meta.image,
                type=EntityType.parse(atom.get("type")),
            ))
        return results

    def market_activity(self, term_id: str) -> List[LedgerEntry]:
        """
        Latest deposits and redemptions into one entity's vaults.

        Args:
            term_id: Entity identifier

        Returns:
            Entries newest first (empty on failure)
        """
        data = self.client.execute(MARKET_ACTIVITY_QUERY, {
            "ids": prepare_query_ids(term_id),
            "limit": settings.market_activity_limit,
        })
        if data is None:
            return []

        entries = []
        for event in data.get("events") or []:
            if not isinstance(event, dict):
                continue
            entry_id = event.get("transaction_hash") or event.get("id")
            if not entry_id:
                continue
            movement = event.get("deposit") or event.get("redemption") or {}
            is_deposit = event.get("type") == "Deposited"
            entries.append(LedgerEntry(
                id=entry_id,
                type=TransactionType.DEPOSIT if is_deposit else TransactionType.REDEEM,
                assets=movement.get("assets_after_fees" if is_deposit else "assets") or "0",
                shares=movement.get("shares") or "0",
                timestamp=parse_timestamp(event.get("created_at")),
                vault_id=term_id,
                curve_id=(movement.get("vault") or {}).get("curve_id"),
            ))
        return entries

    def _target_summary(self, event: Dict[str, Any]) -> Optional[EntitySummary]:
        atom = event.get("atom")
        triple = event.get("triple")
        if isinstance(atom, dict) and atom.get("term_id"):
            meta = self.resolver.resolve_atom(atom, atom["term_id"])
            return EntitySummary(id=atom["term_id"], label=meta.label, image=meta.image, type=meta.type)
        if isinstance(triple, dict) and triple.get("term_id"):
            meta = self.resolver.resolve_claim(triple, triple["term_id"])
            return EntitySummary(id=triple["term_id"], label=meta.label, image=meta.image, type=EntityType.CLAIM)
        return None

    def parse_activity_event(self, event: Dict[str, Any]) -> Optional[ActivityEvent]:
        """
        Map one network event to an activity item.

        Creations take their sender from the creator of the new atom or
        triple; deposits and redemptions from the movement's sender.

        Returns:
            ActivityEvent, or None for unknown event types or records without an id
        """
        if not isinstance(event, dict):
            return None
        entry_id = event.get("transaction_hash") or event.get("id")
        try:
            event_type = ActivityEventType(event.get("type"))
        except ValueError:
            return None
        if not entry_id:
            return None

        target = self._target_summary(event)
        movement: Dict[str, Any] = {}
        if event_type == ActivityEventType.DEPOSITED:
            movement = event.get("deposit") if isinstance(event.get("deposit"), dict) else {}
            assets = movement.get("assets_after_fees")
            sender = movement.get("sender")
        elif event_type == ActivityEventType.REDEEMED:
            movement = event.get("redemption") if isinstance(event.get("redemption"), dict) else {}
            assets = movement.get("assets")
            sender = movement.get("sender")
        else:
            created = event.get("atom") if event_type == ActivityEventType.ATOM_CREATED else event.get("triple")
            assets = None
            sender = created.get("creator") if isinstance(created, dict) else None

        return ActivityEvent(
            id=str(entry_id),
            type=event_type,
            timestamp=parse_timestamp(event.get("created_at")),
            sender=CreatorRef(**sender) if isinstance(sender, dict) and sender.get("id") else None,
            target=target,
            vault_id=target.id if target else "0x",
            curve_id=(movement.get("vault") or {}).get("curve_id"),
            assets=str(assets or "0"),
            shares=str(movement.get("shares") or "0"),
        )

    def global_activity(self, limit: int = None, offset: int = 0) -> ActivityPage:
        """
        One page of network-wide activity, newest first.

        Args:
            limit: Page size (defaults to settings.market_page_size)
            offset: Number of events to skip

        Returns:
            ActivityPage; empty and flagged stale when the indexer fails
        """
        limit = limit or settings.market_page_size
        data = self.client.execute(GLOBAL_ACTIVITY_QUERY, {"limit": limit, "offset": offset})
        if data is None:
            logger.warning(f"Global activity unavailable at offset {offset}")
            return ActivityPage(offset=offset, stale=True)

        events = data.get("events") or []
        items = [self.parse_activity_event(event) for event in events]
        return ActivityPage(
            items=[item for item in items if item is not None],
            offset=offset,
            has_more=len(events) == limit,
        )

    def vault_holders(self, term_id: str) -> HolderList:
        """
        Largest holders of an entity across its id variants.

        Args:
            term_id: Entity identifier

        Returns:
            HolderList ordered by shares; empty and flagged stale on failure
        """
        data = self.client.execute(HOLDERS_QUERY, {
            "ids": prepare_query_ids(term_id),
            "limit": settings.holders_limit,
        })
        if data is None:
            return HolderList(stale=True)

        holders = []
        for position in data.get("positions") or []:
            if not isinstance(position, dict):
                continue
            account = position.get("account")
            if not isinstance(account, dict) or not account.get("id"):
                continue
            holders.append(Holder(account=CreatorRef(**account), shares=safe_parse_units(position.get("shares"))))
        return HolderList(holders=holders, total_count=len(holders))

    def network_stats(self) -> NetworkStats:
        """
        Network totals: value locked, atom count and triple count.

        Returns:
            NetworkStats; the last known totals flagged stale when the indexer
            fails, else zeros flagged stale
        """
        cache_key = "market:network:stats"
        data = self.client.execute(NETWORK_STATS_QUERY, {})
        if data is None:
            cached = self.cache.get_model(cache_key, NetworkStats)
            if cached is not None:
                return cached.model_copy(update={"stale": True})
            return NetworkStats(stale=True)

        def aggregate(name: str) -> Dict[str, Any]:
            return ((data.get(name) or {}).get("aggregate")) or {}

        total_assets = to_base_units((aggregate("vaults_aggregate").get("sum") or {}).get("total_assets"))
        stats = NetworkStats(
            total_assets=str(total_assets),
            tvl=safe_parse_units(total_assets),
            atoms=_count(aggregate("atoms_aggregate").get("count")),
            signals=_count(aggregate("triples_aggregate").get("count")),
        )
        self.cache.set_model(cache_key, stats)
        return stats

    def sector_index(self, ids: List[str]) -> IndexData:
        """Sector index over a set of entities."""
        return PortfolioMetrics.index_value(self.get_entities_by_ids(ids))
