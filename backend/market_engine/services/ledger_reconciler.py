"""
Ledger reconciliation service.

An account history has two sources: the remote indexer, which is
authoritative but lags, and the local pending cache, which records
submitted transactions immediately. This service merges them into one
deduplicated, newest-first history and prunes pending entries once the
indexer has confirmed them.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging
import time

from market_engine.config import settings
from market_engine.schemas.transaction import (
    EntrySource, LedgerEntry, LedgerHistory, TransactionType
)
from market_engine.services.graphql_client import GraphQLClient
from market_engine.services.metadata_resolver import MetadataResolver
from market_engine.services.numeric import safe_parse_units
from market_engine.services.pending_cache import PendingTransactionCache

logger = logging.getLogger(__name__)

HISTORY_QUERY = """
query AccountHistory($userAddress: String!, $limit: Int!) {
  events(limit: $limit, order_by: {created_at: desc}, where: {
    _and: [
      {type: {_neq: "FeesTransfered"}},
      {_not: {_and: [{type: {_eq: "Deposited"}}, {deposit: {assets_after_fees: {_eq: 0}}}]}},
      {_or: [
        {_and: [{type: {_eq: "AtomCreated"}}, {atom: {creator: {id: {_eq: $userAddress}}}}]},
        {_and: [{type: {_eq: "TripleCreated"}}, {triple: {creator: {id: {_eq: $userAddress}}}}]},
        {_and: [{type: {_eq: "Deposited"}}, {deposit: {sender: {id: {_eq: $userAddress}}}}]},
        {_and: [{type: {_eq: "Redeemed"}}, {redemption: {sender: {id: {_eq: $userAddress}}}}]}
      ]}
    ]
  }) {
    id created_at type transaction_hash
    atom { term_id label data image type }
    triple {
      term_id counter_term_id
      subject { label term_id data image type }
      predicate { label term_id }
      object { label term_id data image type }
    }
    deposit { shares assets_after_fees vault { curve_id } }
    redemption { shares assets vault { curve_id } }
  }
}
"""

UNKNOWN_LABEL = "Unknown Node"


def dedupe_key(entry: LedgerEntry) -> str:
    """
    Cross-source key of an entry.

    Indexer event ids may carry a `-<log index>` suffix after the
    transaction hash; only the hash part identifies the transaction.
    """
    key = entry.natural_key
    if key.startswith("0x") and "-" in key:
        key = key.split("-", 1)[0]
    return key


def event_key(entry: LedgerEntry) -> Tuple[str, str, Optional[int], str]:
    """
    Key of one movement inside a transaction.

    A batch transaction emits one event per vault; those stay separate, while
    repeated events for the same vault, curve and direction collapse.
    """
    return (dedupe_key(entry), entry.vault_id.lower(), entry.curve_id, entry.type.value)


def parse_timestamp(value: Any) -> int:
    """Epoch milliseconds from an indexer timestamp; now when missing or unreadable."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return int(parsed.timestamp() * 1000)
        except ValueError:
            logger.debug(f"Unreadable event timestamp {value!r}")
    return int(time.time() * 1000)


class LedgerReconciler:
    """Merge remote and pending history for one account."""

    def __init__(
        self,
        client: Optional[GraphQLClient] = None,
        pending_cache: Optional[PendingTransactionCache] = None,
        resolver: Optional[MetadataResolver] = None,
        page_size: int = None,
    ):
        self.client = client or GraphQLClient()
        self.pending_cache = pending_cache or PendingTransactionCache()
        self.resolver = resolver or MetadataResolver()
        self.page_size = page_size or settings.history_page_size

    @staticmethod
    def merge(remote: Iterable[LedgerEntry], local: Iterable[LedgerEntry]) -> List[LedgerEntry]:
        """
        Merge remote and local entries.

        Remote data wins: a local entry is dropped once any remote event
        carries its transaction hash. Remote events of one transaction are
        kept per vault, curve and direction; repeats of the same movement
        keep the entry that moved the most value.

        Args:
            remote: Entries from the indexer
            local: Entries from the pending cache

        Returns:
            Deduplicated entries sorted by timestamp, newest first
        """
        remote_entries: Dict[Tuple[str, str, Optional[int], str], LedgerEntry] = {}
        for entry in remote:
            key = event_key(entry)
            existing = remote_entries.get(key)
            if existing is None or safe_parse_units(entry.assets) > safe_parse_units(existing.assets):
                remote_entries[key] = entry

        remote_hashes = {key[0] for key in remote_entries}
        local_entries: Dict[str, LedgerEntry] = {}
        for entry in local:
            key = dedupe_key(entry)
            if key not in remote_hashes and key not in local_entries:
                local_entries[key] = entry

        merged = list(remote_entries.values()) + list(local_entries.values())
        return sorted(merged, key=lambda e: e.timestamp, reverse=True)

    def _target(self, raw: Dict[str, Any]) -> Dict[str, Optional[str]]:
        """Vault id and display label of the atom or triple an event targets."""
        atom = raw.get("atom")
        triple = raw.get("triple")
        if isinstance(atom, dict) and atom.get("term_id"):
            return {"vault_id": atom["term_id"], "label": self.resolver.resolve_atom(atom).label}
        if isinstance(triple, dict) and triple.get("term_id"):
            return {"vault_id": triple["term_id"], "label": self.resolver.resolve_claim(triple).label}
        return {"vault_id": "0x", "label": UNKNOWN_LABEL}

    def parse_event(self, raw: Dict[str, Any]) -> Optional[LedgerEntry]:
        """
        Map one indexer event to a ledger entry.

        Args:
            raw: Event record (AtomCreated, TripleCreated, Deposited or Redeemed)

        Returns:
            LedgerEntry, or None for records without any usable id
        """
        if not isinstance(raw, dict):
            return None

        entry_id = raw.get("transaction_hash") or raw.get("id")
        if not entry_id:
            return None

        event_type = raw.get("type")
        target = self._target(raw)
        entry_type = TransactionType.DEPOSIT
        assets = shares = "0"
        curve_id = None

        if event_type == "Deposited" and isinstance(raw.get("deposit"), dict):
            deposit = raw["deposit"]
            assets = deposit.get("assets_after_fees") or "0"
            shares = deposit.get("shares") or "0"
            curve_id = (deposit.get("vault") or {}).get("curve_id")
        elif event_type == "Redeemed" and isinstance(raw.get("redemption"), dict):
            redemption = raw["redemption"]
            entry_type = TransactionType.REDEEM
            assets = redemption.get("assets") or "0"
            shares = redemption.get("shares") or "0"
            curve_id = (redemption.get("vault") or {}).get("curve_id")

        return LedgerEntry(
            id=str(entry_id),
            type=entry_type,
            assets=assets,
            shares=shares,
            timestamp=parse_timestamp(raw.get("created_at")),
            vault_id=target["vault_id"],
            curve_id=curve_id,
            asset_label=target["label"],
            source=EntrySource.REMOTE,
        )

    def parse_events(self, events: Iterable[Dict[str, Any]]) -> List[LedgerEntry]:
        """Parse a list of events, skipping unusable records."""
        entries = [self.parse_event(ev) for ev in events or []]
        return [e for e in entries if e is not None]

    def fetch_remote(self, account: str) -> Optional[List[LedgerEntry]]:
        """
        Remote history of an account (bounded to the history page size).

        Returns:
            Entries newest first, or None when the indexer could not be read
        """
        data = self.client.execute(HISTORY_QUERY, {
            "userAddress": account.lower(),
            "limit": self.page_size,
        })
        if data is None:
            return None
        return self.parse_events(data.get("events"))

    def reconcile(self, account: str) -> LedgerHistory:
        """
        Build the reconciled history of an account.

        Pending entries the indexer now reports are pruned from the pending
        cache. When the indexer is unreachable the history is made of pending
        entries only and flagged stale.

        Args:
            account: Account address

        Returns:
            LedgerHistory, newest first
        """
        local = self.pending_cache.list(account)
        remote = self.fetch_remote(account)

        if remote is None:
            logger.warning(f"Remote history unavailable for {account}, serving {len(local)} pending entries")
            entries = self.merge([], local)
            stale = True
        else:
            remote_keys = {dedupe_key(e) for e in remote}
            confirmed = [e.natural_key for e in local if dedupe_key(e) in remote_keys]
            if confirmed:
                self.pending_cache.prune(account, confirmed)
            entries = self.merge(remote, local)
            stale = False

        pending_count = sum(1 for e in entries if e.source == EntrySource.PENDING)
        logger.debug(f"Reconciled {len(entries)} entries for {account} ({pending_count} pending)")

        return LedgerHistory(
            account=account,
            entries=entries,
            pending_count=pending_count,
            stale=stale,
        )
