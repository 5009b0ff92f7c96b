"""
Tests for the per-identity question quota.
"""

import asyncio
import os
import tempfile
from unittest.mock import Mock

import pytest

from ai_chat_guard.core.usage_gate import UsageGate
from ai_chat_guard.storage.models import UsageRecord
from ai_chat_guard.storage.repository import ChatRepository, initialize_schema


class TestUsageGateWithDatabase:
    """Run the gate against a real SQLite store."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repository = ChatRepository(self.db_path)
        self.gate = UsageGate(self.repository, limit=5)

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_first_request_creates_record(self):
        decision = asyncio.run(self.gate.check_and_increment("user-1", False))

        assert decision.allowed
        assert decision.questions_count == 1
        assert self.repository.get_usage("user-1") == UsageRecord("user-1", 1)

    def test_sixth_sequential_request_denied(self):
        async def ask_six():
            return [
                await self.gate.check_and_increment("user-1", False)
                for _ in range(6)
            ]

        decisions = asyncio.run(ask_six())

        assert [d.allowed for d in decisions] == [True] * 5 + [False]
        assert decisions[-1].reason == "LIMIT_REACHED"
        assert self.repository.get_usage("user-1").questions_count == 5

    def test_identities_counted_separately(self):
        async def scenario():
            for _ in range(5):
                await self.gate.check_and_increment("user-1", False)
            return await self.gate.check_and_increment("user-2", False)

        assert asyncio.run(scenario()).allowed
        assert self.repository.get_usage("user-2").questions_count == 1

    def test_existing_record_is_updated(self):
        self.repository.insert_usage("user-1", 3)

        decision = asyncio.run(self.gate.check_and_increment("user-1", False))

        assert decision.allowed
        assert self.repository.get_usage("user-1").questions_count == 4


class TestUsageGatePrivileged:

    def test_privileged_identity_never_touches_store(self):
        store = Mock()
        gate = UsageGate(store, limit=5)

        async def ask_many():
            return [await gate.check_and_increment("admin-1", True) for _ in range(100)]

        decisions = asyncio.run(ask_many())

        assert all(d.allowed for d in decisions)
        store.get_usage.assert_not_called()
        store.insert_usage.assert_not_called()
        store.update_usage.assert_not_called()

    def test_denied_at_limit_without_write(self):
        store = Mock()
        store.get_usage.return_value = UsageRecord("user-1", 5)
        gate = UsageGate(store, limit=5)

        decision = asyncio.run(gate.check_and_increment("user-1", False))

        assert not decision.allowed
        assert decision.questions_count == 5
        store.insert_usage.assert_not_called()
        store.update_usage.assert_not_called()

    def test_zero_limit_denies_everyone(self):
        store = Mock()
        store.get_usage.return_value = None
        gate = UsageGate(store, limit=0)

        assert not asyncio.run(gate.check_and_increment("user-1", False)).allowed

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError, match="limit must be >= 0"):
            UsageGate(Mock(), limit=-1)
