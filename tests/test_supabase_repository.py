"""
Tests for the Supabase repository against an in-process client.
"""

import asyncio
import logging
import threading
from types import SimpleNamespace

import pytest

from generation_engine.repositories.supabase import INCREMENT_USAGE_FUNCTION, SupabaseNodeRepository


class FakeRpc:

    def __init__(self, client, name, params):
        self.client = client
        self.name = name
        self.params = params

    def execute(self):
        provider = self.params["p_provider"]
        with self.client.lock:
            if provider not in self.client.usage:
                return SimpleNamespace(data=None)
            self.client.usage[provider] += self.params["p_amount"]
            return SimpleNamespace(data=self.client.usage[provider])


class FakeSupabaseClient:
    """Applies usage increments server-side; table reads are not expected."""

    def __init__(self, usage):
        self.usage = dict(usage)
        self.lock = threading.Lock()
        self.calls = []

    def rpc(self, name, params):
        self.calls.append(name)
        return FakeRpc(self, name, params)

    def table(self, name):
        raise AssertionError(f"unexpected table access: {name}")


@pytest.mark.asyncio
async def test_concurrent_usage_increments_are_not_lost():
    client = FakeSupabaseClient({"openai": 0.0})
    repository = SupabaseNodeRepository(client)

    await asyncio.gather(*(repository.increment_provider_usage("openai", 1.0) for _ in range(5)))

    assert client.usage["openai"] == 5.0
    assert client.calls == [INCREMENT_USAGE_FUNCTION] * 5


@pytest.mark.asyncio
async def test_increment_unknown_provider_warns(caplog):
    client = FakeSupabaseClient({})
    repository = SupabaseNodeRepository(client)

    with caplog.at_level(logging.WARNING):
        await repository.increment_provider_usage("missing", 1.0)

    assert "unknown provider: missing" in caplog.text
