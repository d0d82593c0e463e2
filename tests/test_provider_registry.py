"""
Tests for the provider registry and selector.
"""

import pytest

from generation_engine.core.models.errors import (
    AllProvidersFailedError,
    AuthenticationError,
    ProviderNotConfiguredError,
    QuotaExceededError,
    ServerError,
    StreamingUnsupportedError
)
from generation_engine.core.models.provider import ProviderConfig
from generation_engine.core.models.usage import UsageLogEntry
from generation_engine.repositories.memory import InMemoryNodeRepository
from generation_engine.services.events import QueueEventSink, SSEEventSink
from generation_engine.services.provider_registry import ProviderRegistry
from generation_engine.services.usage_tracker import UsageBuffer

from .conftest import FakeClientFactory, FakeProviderClient


def make_registry(repository, factory, config, **kwargs):
    return ProviderRegistry(
        repository,
        client_factory=factory,
        usage_buffer=UsageBuffer(repository, flush_interval=0),
        config=config,
        **kwargs
    )


# ------------------------------------------------------------------
# Loading & lookup
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_load_providers(registry, client_factory):
    """Every stored provider gets a client built with its decrypted key."""
    assert set(registry.clients) == {"openai", "anthropic", "google", "perplexity"}
    assert client_factory.clients["openai"].api_key == "openai-key"


@pytest.mark.asyncio
async def test_load_providers_skips_failing_entry(repository, config):
    """One bad provider does not stop the others from loading."""
    factory = FakeClientFactory()

    def flaky_factory(provider_config, api_key):
        if provider_config.provider == "google":
            raise ValueError("bad settings")
        return factory(provider_config, api_key)

    registry = make_registry(repository, flaky_factory, config)
    loaded = await registry.load_providers()

    assert loaded == 3
    assert "google" not in registry.clients


@pytest.mark.asyncio
async def test_load_providers_decrypts_keys(repository, client_factory, config):
    """Async decryption is awaited before building clients."""
    async def decrypt(value):
        return f"plain:{value}"

    registry = make_registry(repository, client_factory, config, decrypt=decrypt)
    await registry.load_providers()

    assert client_factory.clients["anthropic"].api_key == "plain:anthropic-key"


@pytest.mark.asyncio
async def test_get_provider_unknown(registry):
    """Unknown providers are not configured."""
    with pytest.raises(ProviderNotConfiguredError) as exc_info:
        await registry.get_provider("mistral")

    assert exc_info.value.message == "Provider mistral not configured"


@pytest.mark.asyncio
async def test_get_provider_inactive(registry):
    """Inactive providers are not configured."""
    registry.providers["openai"].active = False

    with pytest.raises(ProviderNotConfiguredError):
        await registry.get_provider("openai")


# ------------------------------------------------------------------
# Spend limits
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_daily_limit_blocks_provider(registry, repository):
    """Spend at or above the daily limit makes a provider unavailable."""
    registry.providers["openai"].daily_limit = 0.01
    repository.usage_logs.append(UsageLogEntry(provider="openai", model="gpt-5", cost=0.02, success=True))

    availability = await registry.check_provider_availability("openai")
    assert availability == {"available": False, "reason": "Daily limit exceeded for provider openai"}

    with pytest.raises(QuotaExceededError):
        await registry.get_provider("openai")


@pytest.mark.asyncio
async def test_monthly_limit_uses_running_counter(registry):
    """The running spend counter counts against the monthly limit."""
    registry.providers["anthropic"].monthly_limit = 1.0
    registry.providers["anthropic"].current_usage = 1.5

    availability = await registry.check_provider_availability("anthropic")

    assert availability["available"] is False
    assert availability["reason"] == "Monthly limit exceeded for provider anthropic"


@pytest.mark.asyncio
async def test_failed_calls_do_not_count_toward_limits(registry, repository):
    """Only successful spend counts."""
    registry.providers["openai"].daily_limit = 0.01
    repository.usage_logs.append(
        UsageLogEntry(provider="openai", model="gpt-5", cost=0.5, success=False, error="boom")
    )

    availability = await registry.check_provider_availability("openai")

    assert availability["available"] is True


# ------------------------------------------------------------------
# Selection & fallback
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_select_primary_provider(registry):
    """A task's default provider and model are used when available."""
    selection = await registry.select_provider_for_task("title_generation")

    assert selection.provider == "openai"
    assert selection.model == "gpt-5-nano"
    assert selection.fallback is False
    assert selection.original_provider is None


@pytest.mark.asyncio
async def test_unmapped_task_uses_default_provider(registry):
    """Unmapped tasks go to the global default provider."""
    selection = await registry.select_provider_for_task("poem_generation", {"complexity": "low"})

    assert selection.provider == "anthropic"
    assert selection.model == "claude-haiku-4"


@pytest.mark.asyncio
async def test_fallback_chain_second_fallback_wins(registry):
    """Primary and first fallback down, second fallback serves the request."""
    registry.providers["openai"].active = False
    registry.providers["anthropic"].active = False

    response = await registry.generate({"task": "title_generation", "prompt": "Hotels"})

    assert response.fallback is True
    assert response.original_provider == "openai"
    assert response.provider == "google"
    assert response.model == "gemini-2.5-pro"


@pytest.mark.asyncio
async def test_all_providers_failed(registry):
    """Exhausting the chain raises one aggregate error naming the task."""
    for config in registry.providers.values():
        config.active = False

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await registry.select_provider_for_task("title_generation")

    assert exc_info.value.message == "All providers failed for task: title_generation"
    assert [a["provider"] for a in exc_info.value.attempts] == ["openai", "anthropic", "google"]


@pytest.mark.asyncio
async def test_fallback_disabled(registry):
    """With fallback disabled only the primary is tried."""
    registry.providers["openai"].active = False

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await registry.select_provider_for_task("title_generation", {"fallback_allowed": False})

    assert len(exc_info.value.attempts) == 1


@pytest.mark.asyncio
async def test_configured_fallback_models_replace_chain(registry):
    """A provider's fallback_models override the built-in chain."""
    registry.providers["openai"].fallback_models = ["perplexity/sonar", "google"]

    chain = registry.get_fallback_providers("openai")

    assert chain == [
        {"provider": "perplexity", "model": "sonar"},
        {"provider": "google", "model": None}
    ]


@pytest.mark.asyncio
async def test_unknown_provider_has_no_fallbacks(registry):
    """Fallback lookup never raises."""
    assert registry.get_fallback_providers("mistral") == []


# ------------------------------------------------------------------
# Generation
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_explicit_override_bypasses_selection(registry, client_factory):
    """An explicit provider and model win over task defaults."""
    response = await registry.generate({
        "task": "title_generation",
        "prompt": "Hotels",
        "provider": "google",
        "model": "gemini-2.5-flash",
        "options": {"maxTokens": 50}
    })

    call = client_factory.clients["google"].calls[0]
    assert call["model"] == "gemini-2.5-flash"
    assert call["options"]["max_tokens"] == 50
    assert call["options"]["maxTokens"] == 50
    assert response.content == "google: Hotels"
    assert response.metadata.finish_reason == "completed"
    assert response.usage.total_tokens == 30
    assert response.fallback is False


@pytest.mark.asyncio
async def test_generate_success_tracks_usage(registry, repository):
    """Successful paid calls are logged and counted."""
    await registry.generate({"task": "title_generation", "prompt": "Hotels"})

    stats = registry.get_usage_stats()
    assert stats["total_requests"] == 1
    assert stats["successful_requests"] == 1
    assert stats["by_provider"]["openai"]["requests"] == 1
    assert registry.providers["openai"].current_usage == pytest.approx(0.001)
    assert repository.providers["openai"].current_usage == pytest.approx(0.001)

    await registry.usage_buffer.flush()
    assert len(repository.usage_logs) == 1
    assert repository.usage_logs[0].task == "title_generation"


@pytest.mark.asyncio
async def test_generate_failure_is_classified(registry, client_factory):
    """Client failures surface as typed errors carrying the acting provider."""
    client_factory.clients["openai"].error = RuntimeError("401 invalid api key")

    with pytest.raises(AuthenticationError) as exc_info:
        await registry.generate({"task": "title_generation", "prompt": "Hotels"})

    assert exc_info.value.provider == "openai"
    assert exc_info.value.model == "gpt-5-nano"

    stats = registry.get_usage_stats()
    assert stats["failed_requests"] == 1
    assert registry.providers["openai"].current_usage == 0


@pytest.mark.asyncio
async def test_generate_retries_transient_failures(registry, client_factory):
    """Retryable failures are retried with the request's retry settings."""
    client = client_factory.clients["openai"]
    client.error = RuntimeError("503 server overloaded")
    client.fail_when = lambda request: len(client.calls) < 2

    response = await registry.generate({
        "task": "title_generation",
        "prompt": "Hotels",
        "options": {"retryDelay": 0}
    })

    assert len(client.calls) == 2
    assert response.content == "openai: Hotels"


@pytest.mark.asyncio
async def test_zero_cost_does_not_touch_counter(registry, client_factory):
    """Only successful calls with a cost increment spend."""
    client_factory.clients["openai"].usage = {"prompt_tokens": 1, "completion_tokens": 1}

    await registry.generate({"task": "title_generation", "prompt": "Hotels"})

    assert registry.providers["openai"].current_usage == 0


@pytest.mark.asyncio
async def test_tracking_failure_is_swallowed(registry, repository, monkeypatch):
    """A tracking outage never fails a generation."""
    async def broken(provider, amount):
        raise ConnectionError("database down")

    monkeypatch.setattr(repository, "increment_provider_usage", broken)

    response = await registry.generate({"task": "title_generation", "prompt": "Hotels"})

    assert response.content == "openai: Hotels"


# ------------------------------------------------------------------
# Streaming
# ------------------------------------------------------------------

STREAM_CHUNKS = [
    {"type": "content", "content": "Hel"},
    {"type": "content", "content": "lo"},
    {"type": "completion", "finish_reason": "stop", "usage": {"prompt_tokens": 3, "completion_tokens": 2, "cost": 0.0005}}
]


@pytest.mark.asyncio
async def test_generate_stream(registry, client_factory):
    """Content chunks are forwarded, then one completion event."""
    client = client_factory.clients["openai"]
    client.streaming = True
    client.chunks = list(STREAM_CHUNKS)
    sink = QueueEventSink()

    response = await registry.generate_stream({"provider": "openai", "prompt": "Hi"}, sink)

    events = sink.drain()
    assert [e["type"] for e in events] == ["content", "content", "completion"]
    assert events[0]["content"] == "Hel"
    assert events[2]["usage"]["total_tokens"] == 5
    assert response.content == "Hello"
    assert response.usage.cost == pytest.approx(0.0005)
    assert response.metadata.finish_reason == "completed"

    stats = registry.get_usage_stats()
    assert stats["successful_requests"] == 1


@pytest.mark.asyncio
async def test_generate_stream_unsupported(registry):
    """Clients without streaming fail fast."""
    sink = QueueEventSink()

    with pytest.raises(StreamingUnsupportedError):
        await registry.generate_stream({"provider": "google", "prompt": "Hi"}, sink)

    events = sink.drain()
    assert events[-1]["type"] == "error"
    assert events[-1]["error_code"] == "STREAMING_UNSUPPORTED"


@pytest.mark.asyncio
async def test_generate_stream_error_chunk(registry, client_factory):
    """An error chunk is classified and reported."""
    client = client_factory.clients["openai"]
    client.streaming = True
    client.chunks = [{"type": "content", "content": "Hel"}, {"type": "error", "error": "503 overloaded"}]
    sink = QueueEventSink()

    with pytest.raises(ServerError):
        await registry.generate_stream({"provider": "openai", "prompt": "Hi"}, sink)

    assert sink.drain()[-1]["type"] == "error"


@pytest.mark.asyncio
async def test_generate_stream_stops_when_consumer_leaves(registry, client_factory):
    """A disconnected consumer stops further chunk emission."""
    client = client_factory.clients["openai"]
    client.streaming = True
    client.chunks = list(STREAM_CHUNKS)
    written = []

    def write(line):
        if written:
            raise ConnectionError("client went away")
        written.append(line)

    sink = SSEEventSink(write)

    response = await registry.generate_stream({"provider": "openai", "prompt": "Hi"}, sink)

    assert len(written) == 1
    assert sink.closed is True
    assert response.content == "Hello"
    assert response.usage.total_tokens == 0


# ------------------------------------------------------------------
# Provider management
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_configure_provider(config):
    """Configuring a provider tests it, stores it encrypted and registers it."""
    repository = InMemoryNodeRepository()
    factory = FakeClientFactory()
    registry = make_registry(repository, factory, config, encrypt=lambda key: f"enc:{key}")

    saved = await registry.configure_provider(
        "perplexity", "pplx-secret",
        limits={"daily": 5.0, "monthly": 100.0}
    )

    assert saved.api_key_encrypted == "enc:pplx-secret"
    assert saved.default_model == "sonar-pro"
    assert saved.daily_limit == 5.0
    assert saved.test_success is True
    assert repository.providers["perplexity"].active is True
    assert factory.clients["perplexity"].api_key == "pplx-secret"
    assert "perplexity" in registry.clients


@pytest.mark.asyncio
async def test_configure_provider_rejects_bad_key(config):
    """A failed connection test raises and stores nothing."""
    repository = InMemoryNodeRepository()

    def factory(provider_config, api_key):
        client = FakeProviderClient(provider_config.provider, provider_config.default_model, api_key)
        client.error = RuntimeError("401 invalid api key")
        return client

    registry = make_registry(repository, factory, config)

    with pytest.raises(AuthenticationError):
        await registry.configure_provider("openai", "bad-key")

    assert repository.providers == {}


@pytest.mark.asyncio
async def test_update_and_delete_provider(registry, repository, client_factory):
    """Updates rebuild the client; deletion removes it."""
    updated = await registry.update_provider("openai", {"api_key": "new-key", "default_model": "gpt-5-mini"})

    assert updated.default_model == "gpt-5-mini"
    assert client_factory.clients["openai"].api_key == "new-key"
    assert registry.get_default_model("openai") == "gpt-5-mini"

    assert await registry.delete_provider("openai") is True
    assert "openai" not in registry.clients
    assert "openai" not in repository.providers


@pytest.mark.asyncio
async def test_update_unknown_provider(registry):
    """Updating an unknown provider fails."""
    with pytest.raises(ProviderNotConfiguredError) as exc_info:
        await registry.update_provider("mistral", {"active": False})

    assert exc_info.value.message == "Provider mistral not found"


@pytest.mark.asyncio
async def test_check_provider_health(registry, repository):
    """Health checks report status and record their time."""
    result = await registry.check_provider_health("google")

    assert result["status"] == "healthy"
    assert registry.providers["google"].last_health_check is not None
    assert repository.providers["google"].last_health_check is not None

    assert (await registry.check_provider_health("mistral"))["status"] == "not_configured"


@pytest.mark.asyncio
async def test_provider_listing_and_models(registry):
    """Listings hide credentials; model lookups use configured lists."""
    listing = registry.list_providers()

    assert len(listing) == 4
    assert all("api_key_encrypted" not in entry for entry in listing)

    assert registry.get_available_models("openai") == []
    assert registry.get_default_models_for_provider("openai")[0] == "gpt-5"
    assert registry.estimate_cost(1000, "openai") == pytest.approx(0.01)
    assert registry.estimate_cost(1000, "mistral") == 0.0

    with pytest.raises(ProviderNotConfiguredError):
        registry.get_available_models("mistral")


@pytest.mark.asyncio
async def test_task_defaults_override(repository, client_factory, config):
    """Configured task defaults override the built-in ones."""
    repository.providers["google"] = ProviderConfig(
        provider="google",
        api_key_encrypted="google-key",
        task_defaults={"title_generation": {"provider": "google", "model": "gemini-2.5-flash"}}
    )
    registry = make_registry(repository, client_factory, config)
    await registry.load_providers()

    selection = await registry.select_provider_for_task("title_generation")

    assert selection.provider == "google"
    assert selection.model == "gemini-2.5-flash"
