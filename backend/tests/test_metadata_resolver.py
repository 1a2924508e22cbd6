"""
Tests for metadata resolution of atoms and triples.
"""
import json

import pytest

from market_engine.constants import DISTRUST_ATOM_ID
from market_engine.schemas.market import EntityType, MarketCategory, VaultAggregate
from market_engine.services.metadata_resolver import (
    MetadataResolver, decode_payload, label_looks_like_identifier
)


pytestmark = pytest.mark.unit

TERM_ID = "0x" + "12" * 32


def encode(payload) -> str:
    return "0x" + json.dumps(payload).encode("utf-8").hex()


@pytest.fixture
def resolver():
    return MetadataResolver()


class TestIdentifierHeuristic:
    """The overridable "label is really an id" predicate."""

    @pytest.mark.parametrize("label", [None, "", "  ", "0x", "0x00ff", "0xABCDEF"])
    def test_identifier_like_labels(self, label):
        assert label_looks_like_identifier(label)

    def test_own_id_without_prefix(self):
        assert label_looks_like_identifier("abc123", "ABC123")

    def test_human_label(self):
        assert not label_looks_like_identifier("Acme", TERM_ID)

    def test_predicate_is_injectable(self):
        resolver = MetadataResolver(looks_like_identifier=lambda label, term_id: label == "placeholder")
        record = {"term_id": TERM_ID, "label": "placeholder", "data": encode({"name": "Acme"})}

        assert resolver.resolve(record).label == "Acme"
        assert resolver.resolve({**record, "label": "0xRealName"}).label == "0xRealName"


class TestPayloadDecoding:
    """Hex-encoded JSON payloads."""

    def test_hex_json(self):
        assert decode_payload(encode({"name": "Acme"})) == {"name": "Acme"}

    def test_plain_json_text(self):
        assert decode_payload('{"name": "Acme"}') == {"name": "Acme"}

    @pytest.mark.parametrize("data", [None, "", "0x", "0xzz", "ipfs://bafy", encode(["a"]), 42])
    def test_undecodable_payloads(self, data):
        assert decode_payload(data) is None


class TestAtomResolution:
    """Resolution order for atoms."""

    def test_direct_label_wins(self, resolver):
        record = {"term_id": TERM_ID, "label": "Direct", "data": encode({"name": "Payload"})}
        assert resolver.resolve(record).label == "Direct"

    def test_payload_name_replaces_identifier_label(self, resolver):
        """A raw id label is replaced by the decoded payload name."""
        record = {"term_id": TERM_ID, "label": TERM_ID, "data": encode({"name": "Acme"})}

        meta = resolver.resolve(record)

        assert meta.label == "Acme"

    def test_payload_description_image_and_links(self, resolver):
        record = {
            "term_id": TERM_ID,
            "label": None,
            "type": "Thing",
            "data": encode({
                "name": "Acme",
                "description": "Widgets",
                "image": "ipfs://img",
                "links": ["https://acme.example", {"label": "docs", "url": "https://docs.acme.example"}, 7],
            }),
        }

        meta = resolver.resolve(record)

        assert meta.description == "Widgets"
        assert meta.image == "ipfs://img"
        assert meta.type == EntityType.THING
        assert [link.url for link in meta.links] == ["https://acme.example", "https://docs.acme.example"]
        assert meta.links[1].label == "docs"

    def test_direct_image_kept(self, resolver):
        record = {"term_id": TERM_ID, "label": "", "image": "direct.png", "data": encode({"name": "A", "image": "p.png"})}
        assert resolver.resolve(record).image == "direct.png"

    def test_typed_value_override(self, resolver):
        record = {
            "term_id": TERM_ID,
            "label": "0x00000000",
            "type": "Person",
            "value": {"person": {"name": "Alice", "description": "Builder", "image": "alice.png"}},
        }

        meta = resolver.resolve(record)

        assert meta.label == "Alice"
        assert meta.description == "Builder"
        assert meta.image == "alice.png"
        assert meta.type == EntityType.PERSON

    def test_fallback_to_truncated_id(self, resolver):
        meta = resolver.resolve({"term_id": TERM_ID, "label": "0x", "data": "0x"})
        assert meta.label == TERM_ID[:8] + "..."

    def test_missing_record(self, resolver):
        assert resolver.resolve(None).label == "Unknown"
        assert resolver.resolve({}).label == "Unknown"

    def test_idempotent(self, resolver):
        record = {"term_id": TERM_ID, "label": TERM_ID, "data": encode({"name": "Acme"})}
        assert resolver.resolve(record) == resolver.resolve(record)


class TestClaimResolution:
    """Triples and opposition detection."""

    @pytest.fixture
    def triple(self):
        return {
            "term_id": "0xt1",
            "counter_term_id": "0xC1",
            "subject": {"term_id": "0xs", "label": "Alice", "image": "alice.png"},
            "predicate": {"label": "trusts"},
            "object": {"term_id": "0xo", "label": "Bob", "image": "bob.png"},
        }

    def test_claim_label(self, resolver, triple):
        meta = resolver.resolve(triple)

        assert meta.label == "Alice trusts Bob"
        assert meta.type == EntityType.CLAIM
        assert meta.image == "alice.png"
        assert meta.is_opposition is False

    def test_missing_predicate_uses_link(self, resolver, triple):
        triple["predicate"] = None
        assert resolver.resolve(triple).label == "Alice LINK Bob"

    def test_counter_term_is_opposition(self, resolver, triple):
        """Displaying the counter vault of a claim reads as opposition."""
        meta = resolver.resolve(triple, term_id="0xc1")

        assert meta.label == "OPPOSING_ALICE"
        assert meta.is_opposition is True
        assert meta.image == "alice.png"

    @pytest.mark.parametrize("object_id", [DISTRUST_ATOM_ID, "0x" + DISTRUST_ATOM_ID[26:].upper()])
    def test_distrust_object_is_opposition(self, resolver, triple, object_id):
        triple["object"] = {"term_id": object_id, "label": "distrust"}
        assert resolver.resolve(triple).label == "OPPOSING_ALICE"

    def test_atom_wrapping_triple(self, resolver, triple):
        assert resolver.resolve({"term_id": "0xt1", "triple": triple}).label == "Alice trusts Bob"

    def test_subject_resolved_from_payload(self, resolver, triple):
        triple["subject"] = {"term_id": "0xs", "label": "0x", "data": encode({"name": "Carol"})}
        assert resolver.resolve(triple).label == "Carol trusts Bob"


class TestEntityView:
    """Composition of the normalized entity view."""

    def test_build_from_atom_and_aggregate(self, resolver):
        aggregate = VaultAggregate(
            term_id=TERM_ID, total_assets=10 ** 18, total_shares=10 ** 18, value=1.0, shares=1.0,
            market_cap=1.0, representative_price=1.0, position_count=3, curve_ids=[1], has_linear=True,
        )
        atom = {"term_id": TERM_ID, "label": "Uniswap DEX", "type": "Organization",
                "creator": {"id": "0xcreator", "label": "alice.eth"}}

        view = resolver.build_entity_view(TERM_ID, aggregate=aggregate, atom=atom)

        assert view.label == "Uniswap DEX"
        assert view.total_assets == str(10 ** 18)
        assert view.spot_price == 1.0
        assert view.position_count == 3
        assert view.category == MarketCategory.PROTOCOL
        assert view.system_verified is True
        assert view.creator.id == "0xcreator"
        assert 1.0 <= view.trust_score <= 99.0

    def test_build_without_records(self, resolver):
        view = resolver.build_entity_view(TERM_ID)

        assert view.label == TERM_ID[:8] + "..."
        assert view.total_assets == "0"
        assert view.trust_score == 15.0
        assert view.volatility == 0.0
