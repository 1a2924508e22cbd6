"""
Metadata resolution for raw atom and triple records.

Indexer records are only partially structured: the label may be missing or
a raw hex id, the real name may hide in a hex-encoded JSON payload or in a
typed `value` sub-object, and claims need a label synthesized from their
subject, predicate and object. This service turns any such record into one
normalized display record without ever raising.
"""
from typing import Any, Callable, Dict, List, Optional
import json
import logging

from market_engine.constants import DEFAULT_PREDICATE_LABEL, DISTRUST_ATOM_ID
from market_engine.schemas.market import (
    CreatorRef, EntityMetadata, EntityType, EntityView, Link, VaultAggregate
)
from market_engine.services.identifiers import ids_equal, normalize_id, truncate_id
from market_engine.services.numeric import format_units
from market_engine.services.portfolio_metrics import PortfolioMetrics

logger = logging.getLogger(__name__)

# Unpadded tail of the distrust marker; indexers report it with and without padding
DISTRUST_MARKER_TAIL = DISTRUST_ATOM_ID.lower()[26:]

TYPED_VALUE_KEYS = ("person", "thing", "organization", "account")


def label_looks_like_identifier(label: Optional[str], term_id: Optional[str] = None) -> bool:
    """
    Best-effort check that a label is a raw identifier rather than a human name.

    True for empty labels, the bare "0x" marker, anything with a hex "0x"
    prefix (which covers zero-byte padded words) and the record's own id.
    Human labels that legitimately start with "0x" are misclassified.
    """
    if not label or not label.strip():
        return True
    stripped = label.strip().lower()
    if stripped.startswith("0x"):
        return True
    return bool(term_id) and stripped == normalize_id(term_id)


def decode_payload(data: Any) -> Optional[Dict[str, Any]]:
    """
    Decode an encoded metadata payload into a JSON object.

    Accepts a 0x-prefixed hex byte string or plain text. Returns None when
    the payload is absent, not decodable or not a JSON object.
    """
    if not data or not isinstance(data, str) or data == "0x":
        return None

    try:
        if data.lower().startswith("0x"):
            text = bytes.fromhex(data[2:]).decode("utf-8", errors="replace")
        else:
            text = data
        decoded = json.loads(text.strip("\x00").strip())
    except (ValueError, TypeError):
        return None

    return decoded if isinstance(decoded, dict) else None


def _parse_links(raw: Any) -> List[Link]:
    links = []
    if not isinstance(raw, list):
        return links
    for item in raw:
        if isinstance(item, str) and item:
            links.append(Link(label=item, url=item))
        elif isinstance(item, dict) and item.get("url"):
            links.append(Link(label=str(item.get("label") or item["url"]), url=str(item["url"])))
    return links


def parse_creator(raw: Any) -> Optional[CreatorRef]:
    """Creator reference from a raw `creator` sub-record."""
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    return CreatorRef(id=str(raw["id"]), label=raw.get("label"), image=raw.get("image"))


class MetadataResolver:
    """
    Resolve raw entity records into normalized display metadata.

    The identifier heuristic is injectable so it can be replaced without
    touching the resolution order.
    """

    def __init__(
        self,
        looks_like_identifier: Callable[[Optional[str], Optional[str]], bool] = label_looks_like_identifier
    ):
        self.looks_like_identifier = looks_like_identifier

    @staticmethod
    def is_claim(record: Optional[Dict[str, Any]]) -> bool:
        """True for triple-shaped records."""
        return isinstance(record, dict) and any(k in record for k in ("subject", "predicate", "object"))

    def resolve(self, record: Optional[Dict[str, Any]], term_id: Optional[str] = None) -> EntityMetadata:
        """
        Resolve any atom or triple record.

        Args:
            record: Raw indexer record; atoms may wrap a claim under `triple`
            term_id: Identifier being displayed (defaults to the record's own);
                matched against a claim's counter-term to detect opposition

        Returns:
            EntityMetadata with a non-empty label
        """
        if not isinstance(record, dict):
            return EntityMetadata(label="Unknown")

        claim = record.get("triple") if isinstance(record.get("triple"), dict) else None
        if claim is None and self.is_claim(record):
            claim = record

        if claim is not None:
            present_id = term_id or record.get("term_id")
            return self.resolve_claim(claim, present_id)

        return self.resolve_atom(record, term_id)

    def resolve_atom(self, record: Optional[Dict[str, Any]], term_id: Optional[str] = None) -> EntityMetadata:
        """Resolve an atom record (direct fields, encoded payload, typed value)."""
        if not isinstance(record, dict):
            return EntityMetadata(label="Unknown")

        term_id = term_id or record.get("term_id")
        label = record.get("label")
        image = record.get("image") or None
        description = ""
        links: List[Link] = []

        payload = decode_payload(record.get("data"))
        if payload:
            name = payload.get("name")
            if name and self.looks_like_identifier(label, term_id):
                label = str(name)
            if payload.get("description"):
                description = str(payload["description"])
            if payload.get("image") and not image:
                image = str(payload["image"])
            links = _parse_links(payload.get("links"))

        value = record.get("value")
        if isinstance(value, dict):
            typed = next((value[k] for k in TYPED_VALUE_KEYS if isinstance(value.get(k), dict)), None)
            if typed:
                if self.looks_like_identifier(label, term_id):
                    label = typed.get("name") or typed.get("label") or label
                if not description:
                    description = typed.get("description") or ""
                if not image:
                    image = typed.get("image") or None

        if self.looks_like_identifier(label, term_id):
            label = truncate_id(term_id) if term_id else "Unknown"

        return EntityMetadata(
            label=label,
            description=description,
            type=EntityType.parse(record.get("type")),
            image=image,
            links=links,
        )

    def resolve_claim(self, claim: Dict[str, Any], present_id: Optional[str] = None) -> EntityMetadata:
        """
        Resolve a triple. Subject and object are resolved as atoms only, one
        level deep.
        """
        subject = claim.get("subject") if isinstance(claim.get("subject"), dict) else {}
        obj = claim.get("object") if isinstance(claim.get("object"), dict) else {}
        predicate = claim.get("predicate") if isinstance(claim.get("predicate"), dict) else {}

        subject_meta = self.resolve_atom(subject, subject.get("term_id") or claim.get("subject_id"))
        object_id = obj.get("term_id") or claim.get("object_id")

        points_to_distrust = DISTRUST_MARKER_TAIL in normalize_id(object_id)
        is_counter = ids_equal(claim.get("counter_term_id"), present_id)

        if points_to_distrust or is_counter:
            subject_label = subject_meta.label
            return EntityMetadata(
                label=f"OPPOSING_{subject_label}".upper(),
                description=f"A directional signal of distrust against {subject_label}.",
                type=EntityType.CLAIM,
                image=subject.get("image") or subject_meta.image,
                is_opposition=True,
            )

        object_meta = self.resolve_atom(obj, object_id)
        predicate_label = predicate.get("label") or DEFAULT_PREDICATE_LABEL
        label = f"{subject_meta.label} {predicate_label} {object_meta.label}"

        return EntityMetadata(
            label=label,
            description="",
            type=EntityType.CLAIM,
            image=subject.get("image") or obj.get("image") or None,
        )

    def build_entity_view(
        self,
        term_id: str,
        aggregate: Optional[VaultAggregate] = None,
        atom: Optional[Dict[str, Any]] = None,
        triple: Optional[Dict[str, Any]] = None,
    ) -> EntityView:
        """
        Compose the normalized entity view from its vault aggregate and raw
        atom/triple records. Missing pieces fall back to defaults.
        """
        if triple is not None:
            meta = self.resolve_claim(triple, term_id)
        elif atom is not None:
            meta = self.resolve_atom(atom, term_id)
        else:
            meta = EntityMetadata(label=truncate_id(term_id))

        creator = parse_creator((atom or {}).get("creator")) or parse_creator((triple or {}).get("creator"))

        total_assets = aggregate.total_assets if aggregate else 0
        value = format_units(total_assets)

        return EntityView(
            id=term_id,
            counter_term_id=(triple or {}).get("counter_term_id"),
            label=meta.label,
            description=meta.description,
            image=meta.image,
            type=meta.type,
            links=meta.links,
            creator=creator,
            total_assets=str(total_assets),
            total_shares=str(aggregate.total_shares if aggregate else 0),
            value=value,
            market_cap=aggregate.market_cap if aggregate else 0.0,
            spot_price=aggregate.representative_price if aggregate else 0.0,
            position_count=aggregate.position_count if aggregate else 0,
            trust_score=PortfolioMetrics.trust_score(value),
            volatility=PortfolioMetrics.volatility(value),
            category=PortfolioMetrics.categorize(meta.label, meta.type),
            system_verified=PortfolioMetrics.is_system_verified(meta.label, meta.type),
        )
