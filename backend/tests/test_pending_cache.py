"""
Tests for the pending transaction cache (Redis path and in-memory fallback).
"""
from unittest.mock import MagicMock

import pytest
import redis

from market_engine.schemas.transaction import EntrySource
from market_engine.services.pending_cache import PendingTransactionCache


pytestmark = pytest.mark.unit

ACCOUNT = "0x" + "Ab" * 20


class TestInMemoryFallback:
    """Behavior without Redis (the shared client factory reports it down)."""

    def test_append_marks_pending_and_lists_newest_first(self, make_entry):
        cache = PendingTransactionCache()

        cache.append(ACCOUNT, make_entry(entry_id="0x1"))
        stored = cache.append(ACCOUNT, make_entry(entry_id="0x2"))

        assert stored.source == EntrySource.PENDING
        assert [e.id for e in cache.list(ACCOUNT)] == ["0x2", "0x1"]

    def test_account_key_is_case_insensitive(self, make_entry):
        cache = PendingTransactionCache()

        cache.append(ACCOUNT.upper(), make_entry())

        assert len(cache.list(ACCOUNT.lower())) == 1

    def test_accounts_are_isolated(self, make_entry):
        cache = PendingTransactionCache()

        cache.append(ACCOUNT, make_entry())

        assert cache.list("0x" + "cd" * 20) == []
        assert cache.list("") == []

    def test_capacity_keeps_newest(self, make_entry):
        cache = PendingTransactionCache(max_entries=3)

        for i in range(5):
            cache.append(ACCOUNT, make_entry(entry_id=f"0x{i}"))

        assert [e.id for e in cache.list(ACCOUNT)] == ["0x4", "0x3", "0x2"]

    def test_prune_removes_confirmed(self, make_entry):
        cache = PendingTransactionCache()
        cache.append(ACCOUNT, make_entry(entry_id="0xAAA"))
        cache.append(ACCOUNT, make_entry(entry_id="local-1"))

        removed = cache.prune(ACCOUNT, {"0xaaa"})

        assert removed == 1
        assert [e.id for e in cache.list(ACCOUNT)] == ["local-1"]

    def test_prune_without_matches(self, make_entry):
        cache = PendingTransactionCache()
        cache.append(ACCOUNT, make_entry(entry_id="0x1"))

        assert cache.prune(ACCOUNT, set()) == 0
        assert cache.prune(ACCOUNT, {"0x2"}) == 0
        assert len(cache.list(ACCOUNT)) == 1

    def test_clear(self, make_entry):
        cache = PendingTransactionCache()
        cache.append(ACCOUNT, make_entry())

        cache.clear(ACCOUNT)

        assert cache.list(ACCOUNT) == []


class TestRedisBackend:
    """Behavior against a Redis client double."""

    @pytest.fixture
    def redis_client(self):
        return MagicMock()

    def test_append_pushes_trims_and_expires(self, redis_client, make_entry):
        cache = PendingTransactionCache(redis_client=redis_client, max_entries=10, ttl_seconds=60)

        cache.append(ACCOUNT, make_entry(entry_id="0x1"))

        pipe = redis_client.pipeline.return_value
        key = f"market:pending:{ACCOUNT.lower()}"
        assert pipe.lpush.call_args[0][0] == key
        assert '"source":"PENDING"' in pipe.lpush.call_args[0][1]
        pipe.ltrim.assert_called_once_with(key, 0, 9)
        pipe.expire.assert_called_once_with(key, 60)
        pipe.execute.assert_called_once()

    def test_list_decodes_and_skips_garbage(self, redis_client, make_entry):
        entry = make_entry(entry_id="0x1")
        redis_client.lrange.return_value = [entry.model_dump_json(), "not json", '{"id": ""}']
        cache = PendingTransactionCache(redis_client=redis_client)

        entries = cache.list(ACCOUNT)

        assert [e.id for e in entries] == ["0x1"]

    def test_prune_rewrites_list(self, redis_client, make_entry):
        redis_client.lrange.return_value = [
            make_entry(entry_id="0x1").model_dump_json(),
            make_entry(entry_id="0x2").model_dump_json(),
        ]
        cache = PendingTransactionCache(redis_client=redis_client)

        removed = cache.prune(ACCOUNT, {"0x1"})

        pipe = redis_client.pipeline.return_value
        assert removed == 1
        pipe.delete.assert_called_once()
        pushed = pipe.rpush.call_args[0][1:]
        assert len(pushed) == 1
        assert '"id":"0x2"' in pushed[0]

    def test_write_failure_falls_back_to_memory(self, redis_client, make_entry):
        redis_client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")
        redis_client.lrange.side_effect = redis.ConnectionError("down")
        cache = PendingTransactionCache(redis_client=redis_client)

        cache.append(ACCOUNT, make_entry(entry_id="0x1"))

        assert [e.id for e in cache.list(ACCOUNT)] == ["0x1"]

    def test_memory_entries_survive_redis_recovery(self, redis_client, make_entry):
        pipe = redis_client.pipeline.return_value
        pipe.execute.side_effect = redis.ConnectionError("down")
        cache = PendingTransactionCache(redis_client=redis_client)
        cache.append(ACCOUNT, make_entry(entry_id="0xoffline", timestamp=20))

        pipe.execute.side_effect = None
        redis_client.lrange.return_value = [make_entry(entry_id="0xstored", timestamp=10).model_dump_json()]

        assert [e.id for e in cache.list(ACCOUNT)] == ["0xoffline", "0xstored"]

    def test_prune_writes_memory_entries_back(self, redis_client, make_entry):
        pipe = redis_client.pipeline.return_value
        pipe.execute.side_effect = redis.ConnectionError("down")
        cache = PendingTransactionCache(redis_client=redis_client)
        cache.append(ACCOUNT, make_entry(entry_id="0xoffline", timestamp=20))

        pipe.execute.side_effect = None
        redis_client.lrange.return_value = [make_entry(entry_id="0xdone", timestamp=10).model_dump_json()]

        assert cache.prune(ACCOUNT, {"0xdone"}) == 1

        pushed = pipe.rpush.call_args[0][1:]
        assert len(pushed) == 1
        assert '"id":"0xoffline"' in pushed[0]
        redis_client.lrange.return_value = []
        assert cache.list(ACCOUNT) == []
