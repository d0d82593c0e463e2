"""
Shared fixtures for the generation engine tests.
"""

import pytest
import pytest_asyncio

from generation_engine.core.models.provider import ProviderConfig
from generation_engine.integrations.llm.base import ProviderClient
from generation_engine.repositories.memory import InMemoryNodeRepository
from generation_engine.services.context_assembler import ContextAssembler
from generation_engine.services.orchestrator import GenerationOrchestrator
from generation_engine.services.provider_registry import ProviderRegistry
from generation_engine.services.tree_store import TreeStore
from generation_engine.services.usage_tracker import UsageBuffer
from generation_engine.utils.config import get_config


PROVIDERS = ("openai", "anthropic", "google", "perplexity")


class FakeProviderClient(ProviderClient):
    """Scripted provider client."""

    def __init__(self, provider, default_model=None, api_key=None):
        super().__init__(provider, default_model)
        self.api_key = api_key
        self.calls = []
        self.error = None
        self.fail_when = None
        self.streaming = False
        self.chunks = []
        self.usage = {"prompt_tokens": 10, "completion_tokens": 20, "cost": 0.001}

    async def generate(self, request):
        self.calls.append(request)
        if self.error is not None and (self.fail_when is None or self.fail_when(request)):
            raise self.error
        return {
            "id": f"{self.provider}-{len(self.calls)}",
            "content": f"{self.provider}: {request['prompt']}",
            "finish_reason": "stop",
            "usage": dict(self.usage)
        }

    async def generate_stream(self, request):
        self.calls.append(request)
        for chunk in self.chunks:
            yield chunk

    def supports_streaming(self):
        return self.streaming

    def estimate_cost(self, tokens, model=None):
        return tokens * 0.00001


class FakeClientFactory:
    """Builds one FakeProviderClient per provider and remembers it."""

    def __init__(self):
        self.clients = {}

    def __call__(self, config, api_key):
        client = FakeProviderClient(config.provider, config.default_model, api_key)
        self.clients[config.provider] = client
        return client


@pytest.fixture
def config():
    return get_config('testing')


@pytest.fixture
def repository():
    return InMemoryNodeRepository(
        providers=[ProviderConfig(provider=name, api_key_encrypted=f"{name}-key") for name in PROVIDERS],
        style_guides=[
            {"id": "brand-1", "type": "brand", "content": "Be clear and warm."},
            {"id": "vert-tech", "type": "vertical", "vertical": "tech", "content": "Use precise terms."},
            {"id": "style-1", "type": "writing_style", "name": "Conversational", "content": "Talk to the reader."}
        ],
        blogs=[
            {
                "id": "post-1", "title": "Hotel Trends", "synopsis": "What guests want.",
                "tags": ["hotels"], "content": "Guests want speed.", "vertical": "hospitality",
                "created_at": "2024-01-01T00:00:00"
            },
            {
                "id": "post-2", "title": "Cloud Costs", "synopsis": "Trimming the bill.",
                "tags": ["cloud"], "content": "Right-size instances.", "vertical": "tech",
                "created_at": "2024-02-01T00:00:00"
            }
        ],
        reference_images=[
            {"id": "img-1", "type": "style", "name": "Minimal", "description": "White space, muted tones"}
        ]
    )


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest_asyncio.fixture
async def registry(repository, client_factory, config):
    usage_buffer = UsageBuffer(repository, buffer_size=100, flush_interval=0)
    registry = ProviderRegistry(
        repository,
        client_factory=client_factory,
        usage_buffer=usage_buffer,
        config=config
    )
    await registry.load_providers()
    yield registry
    await registry.close()


@pytest.fixture
def tree_store(repository):
    return TreeStore(repository)


@pytest.fixture
def context_assembler(repository):
    return ContextAssembler(repository)


@pytest.fixture
def orchestrator(registry, tree_store, context_assembler):
    return GenerationOrchestrator(registry, tree_store, context_assembler)
