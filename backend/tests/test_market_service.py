"""
Tests for market listing, entity detail, search, activity, holder and network views.
"""
from unittest.mock import MagicMock

import pytest

from market_engine.schemas.market import ActivityEventType, EntityType, EntityView, MarketPage, NetworkStats
from market_engine.schemas.transaction import TransactionType
from market_engine.services.cache import CacheService
from market_engine.services.market_service import (
    ENTITY_DETAIL_QUERY, ENTITY_RECORDS_QUERY, GLOBAL_ACTIVITY_QUERY, HOLDERS_QUERY, NETWORK_STATS_QUERY,
    SEARCH_QUERY, VAULTS_PAGE_QUERY, MarketService
)


pytestmark = pytest.mark.unit

ONE = 10 ** 18


def vault(term_id, curve_id=1, assets=ONE, shares=ONE):
    return {
        "term_id": term_id, "curve_id": curve_id, "total_assets": str(assets),
        "total_shares": str(shares), "current_share_price": "0", "position_count": 1,
    }


@pytest.fixture
def cache():
    mock_cache = MagicMock(spec=CacheService)
    mock_cache.get_model.return_value = None
    return mock_cache


@pytest.fixture
def service(mock_graphql, cache):
    return MarketService(client=mock_graphql, cache=cache)


def route(responses):
    """Dispatch execute() calls to canned data by query document."""
    def _execute(query, variables=None):
        return responses.get(query)
    return _execute


class TestListMarkets:
    """Paged listing."""

    def test_page_composed_from_vaults_and_records(self, service, mock_graphql, cache):
        mock_graphql.execute.side_effect = route({
            VAULTS_PAGE_QUERY: {"vaults": [vault("0xA1"), vault("0xa1", curve_id=2), vault("0xB2")]},
            ENTITY_RECORDS_QUERY: {
                "atoms": [{"term_id": "0xa1", "label": "Acme"}],
                "triples": [],
                "counter_triples": [{
                    "term_id": "0xt", "counter_term_id": "0xB2",
                    "subject": {"label": "Alice"}, "predicate": {"label": "is"}, "object": {"label": "Good"},
                }],
            },
        })

        result = service.list_markets(limit=3, offset=0)

        assert [item.label for item in result.items] == ["Acme", "OPPOSING_ALICE"]
        assert result.items[0].total_assets == str(2 * ONE)
        assert result.has_more is True
        assert result.stale is False
        cache.set_model.assert_called_once_with("market:page:3:0", result)

    def test_short_page_has_no_more(self, service, mock_graphql):
        mock_graphql.execute.side_effect = route({
            VAULTS_PAGE_QUERY: {"vaults": [vault("0xa1")]},
            ENTITY_RECORDS_QUERY: {"atoms": [], "triples": []},
        })

        assert service.list_markets(limit=40).has_more is False

    def test_empty_listing(self, service, mock_graphql):
        mock_graphql.execute.return_value = {"vaults": []}

        result = service.list_markets(offset=80)

        assert result.items == []
        assert result.offset == 80
        assert result.has_more is False

    def test_indexer_down_serves_cached_page_as_stale(self, service, mock_graphql, cache):
        cache.get_model.return_value = MarketPage(items=[EntityView(id="0xa1", label="Acme")], has_more=True)
        mock_graphql.execute.return_value = None

        result = service.list_markets(limit=40)

        assert result.stale is True
        assert result.items[0].label == "Acme"
        cache.set_model.assert_not_called()

    def test_indexer_down_without_cache(self, service, mock_graphql):
        mock_graphql.execute.return_value = None

        result = service.list_markets()

        assert result.stale is True
        assert result.items == []
        assert result.has_more is False

    def test_records_missing_degrades_labels(self, service, mock_graphql, cache):
        mock_graphql.execute.side_effect = route({VAULTS_PAGE_QUERY: {"vaults": [vault("0x" + "ab" * 32)]}})

        result = service.list_markets(limit=40)

        assert result.stale is True
        assert result.items[0].label == "0xababab..."
        cache.set_model.assert_not_called()


class TestEntityDetail:
    """Single entity views."""

    def test_detail_queries_all_id_variants(self, service, mock_graphql, cache):
        address = "0x" + "Ab" * 20
        mock_graphql.execute.return_value = {
            "vaults": [vault(address.lower())],
            "atoms": [{"term_id": address.lower(), "label": "alice.eth", "type": "Account"}],
            "triples": [],
        }

        view = service.get_entity(address)

        ids = mock_graphql.execute.call_args[0][1]["ids"]
        assert address in ids and address.lower() in ids
        assert view.label == "alice.eth"
        assert view.system_verified is True
        assert view.value == pytest.approx(1.0)
        cache.set_model.assert_called_once()

    def test_unknown_entity(self, service, mock_graphql):
        mock_graphql.execute.return_value = {"vaults": [], "atoms": [], "triples": []}
        assert service.get_entity("0xabc").label == "Unknown"

    def test_offline_entity(self, service, mock_graphql):
        mock_graphql.execute.return_value = None
        assert service.get_entity("0xabc").label == "Offline"

    def test_offline_uses_cached_view(self, service, mock_graphql, cache):
        cache.get_model.return_value = EntityView(id="0xabc", label="Acme")
        mock_graphql.execute.return_value = None

        assert service.get_entity("0xABC").label == "Acme"
        assert cache.get_model.call_args[0][0] == "market:entity:0xabc"

    def test_entities_by_ids(self, service, mock_graphql):
        mock_graphql.execute.return_value = {
            "vaults": [vault("0xa1"), vault("0xb2")],
            "atoms": [{"term_id": "0xa1", "label": "A"}, {"term_id": "0xb2", "label": "B"}],
        }

        views = service.get_entities_by_ids(["0xA1", "0xb2"])

        assert mock_graphql.execute.call_args[0][0] == ENTITY_DETAIL_QUERY
        assert [v.label for v in views] == ["A", "B"]
        assert service.get_entities_by_ids([]) == []

    def test_sector_index(self, service, mock_graphql):
        mock_graphql.execute.return_value = None
        assert service.sector_index(["0xa1"]).forecast == "Sector Offline."


class TestSearchAndActivity:
    """Search and per-entity activity."""

    def test_search(self, service, mock_graphql):
        mock_graphql.execute.return_value = {"atoms": [
            {"term_id": "0xa1", "label": "Acme", "type": "Organization"},
            {"label": "no id"},
        ]}

        results = service.search("  acme ")

        query, variables = mock_graphql.execute.call_args[0]
        assert query == SEARCH_QUERY
        assert variables["term"] == "%acme%"
        assert len(results) == 1
        assert results[0].label == "Acme"
        assert results[0].type == EntityType.ORGANIZATION

    def test_blank_search_skips_query(self, service, mock_graphql):
        assert service.search("   ") == []
        mock_graphql.execute.assert_not_called()

    def test_search_failure(self, service, mock_graphql):
        mock_graphql.execute.return_value = None
        assert service.search("acme") == []

    def test_market_activity(self, service, mock_graphql):
        mock_graphql.execute.return_value = {"events": [
            {"id": "e1", "transaction_hash": "0xtx1", "type": "Deposited", "created_at": 2000,
             "deposit": {"assets_after_fees": "10", "shares": "9", "vault": {"curve_id": 1}}},
            {"id": "e2", "type": "Redeemed", "created_at": 1000,
             "redemption": {"assets": "4", "shares": "5", "vault": {"curve_id": 2}}},
            {"type": "Deposited"},
        ]}

        entries = service.market_activity("0xa1")

        assert [e.id for e in entries] == ["0xtx1", "e2"]
        assert entries[0].assets == "10"
        assert entries[1].type == TransactionType.REDEEM
        assert entries[1].assets == "4"
        assert entries[1].curve_id == 2
        assert all(e.vault_id == "0xa1" for e in entries)

    def test_market_activity_failure(self, service, mock_graphql):
        mock_graphql.execute.return_value = None
        assert service.market_activity("0xa1") == []


class TestGlobalActivity:
    """Network-wide activity feed."""

    def test_events_mapped_with_sender_and_target(self, service, mock_graphql):
        mock_graphql.execute.return_value = {"events": [
            {
                "id": "0xd-0", "transaction_hash": "0xd", "type": "Deposited", "created_at": 1000,
                "atom": {"term_id": "0xa1", "label": "Acme"},
                "deposit": {
                    "assets_after_fees": "500", "shares": "400",
                    "sender": {"id": "0xalice", "label": "alice.eth"}, "vault": {"curve_id": 2},
                },
            },
            {
                "id": "0xc-0", "type": "TripleCreated", "created_at": 900,
                "triple": {
                    "term_id": "0xt1", "creator": {"id": "0xbob"},
                    "subject": {"label": "Alice"}, "predicate": {"label": "trusts"}, "object": {"label": "Bob"},
                },
            },
            {"id": "0xf-0", "type": "FeesTransfered", "created_at": 800},
            "junk",
        ]}

        page = service.global_activity(limit=4, offset=8)

        deposit, creation = page.items
        assert deposit.id == "0xd"
        assert deposit.type == ActivityEventType.DEPOSITED
        assert deposit.sender.label == "alice.eth"
        assert deposit.target.label == "Acme"
        assert deposit.vault_id == "0xa1"
        assert deposit.curve_id == 2
        assert deposit.assets == "500"
        assert creation.type == ActivityEventType.TRIPLE_CREATED
        assert creation.sender.id == "0xbob"
        assert creation.target.type == EntityType.CLAIM
        assert creation.target.label == "Alice trusts Bob"
        assert creation.assets == "0"
        assert page.offset == 8
        assert page.has_more is True
        assert mock_graphql.execute.call_args[0] == (GLOBAL_ACTIVITY_QUERY, {"limit": 4, "offset": 8})

    def test_redemption_without_sender(self, service, mock_graphql):
        mock_graphql.execute.return_value = {"events": [{
            "id": "0xr", "type": "Redeemed", "created_at": 5,
            "redemption": {"assets": "70", "shares": "90"},
        }]}

        event = service.global_activity(limit=40).items[0]

        assert event.sender is None
        assert event.target is None
        assert event.vault_id == "0x"
        assert event.assets == "70"

    def test_short_page_has_no_more(self, service, mock_graphql):
        mock_graphql.execute.return_value = {"events": []}

        page = service.global_activity(limit=40)

        assert page.items == []
        assert page.has_more is False
        assert page.stale is False

    def test_indexer_down(self, service, mock_graphql):
        mock_graphql.execute.return_value = None

        page = service.global_activity(offset=40)

        assert page.stale is True
        assert page.items == []
        assert page.offset == 40


class TestHoldersAndNetworkStats:
    """Vault holders and network totals."""

    def test_holders(self, service, mock_graphql):
        mock_graphql.execute.return_value = {"positions": [
            {"shares": str(3 * ONE), "account": {"id": "0xalice", "label": "alice.eth"}},
            {"shares": str(ONE), "account": {"id": "0xbob"}},
            {"shares": str(ONE), "account": None},
        ]}

        result = service.vault_holders("0xa1")

        assert [h.account.id for h in result.holders] == ["0xalice", "0xbob"]
        assert result.holders[0].shares == pytest.approx(3.0)
        assert result.total_count == 2
        query, variables = mock_graphql.execute.call_args[0]
        assert query == HOLDERS_QUERY
        assert "0xa1" in variables["ids"]
        assert variables["limit"] == 50

    def test_holders_indexer_down(self, service, mock_graphql):
        mock_graphql.execute.return_value = None

        result = service.vault_holders("0xa1")

        assert result.stale is True
        assert result.total_count == 0

    def test_network_stats(self, service, mock_graphql, cache):
        mock_graphql.execute.return_value = {
            "vaults_aggregate": {"aggregate": {"sum": {"total_assets": str(1234 * ONE)}}},
            "atoms_aggregate": {"aggregate": {"count": 420}},
            "triples_aggregate": {"aggregate": {"count": "37"}},
        }

        stats = service.network_stats()

        assert stats.total_assets == str(1234 * ONE)
        assert stats.tvl == pytest.approx(1234.0)
        assert stats.atoms == 420
        assert stats.signals == 37
        assert stats.stale is False
        assert mock_graphql.execute.call_args[0][0] == NETWORK_STATS_QUERY
        cache.set_model.assert_called_once_with("market:network:stats", stats)

    def test_network_stats_malformed_totals(self, service, mock_graphql):
        mock_graphql.execute.return_value = {
            "vaults_aggregate": {"aggregate": {"sum": {"total_assets": None}}},
            "atoms_aggregate": None,
            "triples_aggregate": {"aggregate": {"count": "many"}},
        }

        stats = service.network_stats()

        assert stats.tvl == 0.0
        assert stats.atoms == 0
        assert stats.signals == 0

    def test_network_stats_indexer_down_serves_cached(self, service, mock_graphql, cache):
        mock_graphql.execute.return_value = None
        cache.get_model.return_value = NetworkStats(total_assets="5", atoms=3)

        stats = service.network_stats()

        assert stats.stale is True
        assert stats.atoms == 3
        cache.set_model.assert_not_called()

    def test_network_stats_indexer_down_without_cache(self, service, mock_graphql):
        mock_graphql.execute.return_value = None

        stats = service.network_stats()

        assert stats.stale is True
        assert stats.tvl == 0.0
