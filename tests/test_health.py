"""
Tests for health checks.
"""

import pytest

from generation_engine.repositories.memory import InMemoryNodeRepository
from generation_engine.utils.health import HealthChecker


class DownRepository(InMemoryNodeRepository):
    async def ping(self):
        raise ConnectionError("database unreachable")


@pytest.mark.asyncio
async def test_healthy_status(repository, registry):
    checker = HealthChecker(repository, registry)

    status = await checker.get_health_status()

    assert status["status"] == "healthy"
    assert status["components"]["repository"]["status"] == "healthy"
    assert set(status["components"]["providers"]) == {"openai", "anthropic", "google", "perplexity"}
    assert "memory_percent" in status["components"]["system"]


@pytest.mark.asyncio
async def test_unhealthy_provider_degrades(repository, registry, client_factory):
    client_factory.clients["google"].error = RuntimeError("503 service unavailable")
    checker = HealthChecker(repository, registry)

    status = await checker.get_health_status()

    assert status["status"] == "degraded"
    assert status["components"]["providers"]["google"]["status"] == "unhealthy"
    assert repository.providers["google"].last_health_check is not None


@pytest.mark.asyncio
async def test_repository_down():
    checker = HealthChecker(DownRepository())

    status = await checker.get_health_status()

    assert status["status"] == "degraded"
    assert status["components"]["repository"]["error"] == "database unreachable"
    assert status["components"]["providers"] == {"status": "not_configured"}
