"""
Provider registry and selector.

This module loads provider configurations, builds one client per
provider, chooses a provider and model for each task (with fallback),
normalizes requests and responses, and records usage and spend.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from functools import partial
from typing import Optional, List, Dict, Any, Callable, Union

from ..core.models.errors import (
    AllProvidersFailedError,
    ErrorResponse,
    GenerationEngineError,
    ProviderError,
    ProviderNotConfiguredError,
    QuotaExceededError,
    StreamingUnsupportedError
)
from ..core.models.events import EventType
from ..core.models.generation import (
    GenerationMetadata,
    GenerationRequest,
    GenerationResponse,
    GenerationUsage
)
from ..core.models.provider import ProviderConfig, ProviderSelection, TaskDefault
from ..core.models.usage import UsageLogEntry, UsageWindow
from ..integrations.llm.base import ClientFactory, ProviderClient
from ..integrations.llm.litellm_client import create_litellm_client
from ..integrations.llm.normalization import (
    classify_provider_error,
    normalize_finish_reason,
    normalize_request,
    normalize_response,
    normalize_stream_chunk
)
from ..integrations.llm.retry_handler import RetryHandler
from ..repositories.base import NodeRepository
from ..utils.config import Config, get_config
from .events import EventSink, emit_event
from .usage_tracker import UsageBuffer
from . import workflows


logger = logging.getLogger(__name__)


def _identity(value: Optional[str]) -> Optional[str]:
    return value


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class ProviderRegistry:
    """
    Registry of configured providers.

    Selection tries the task's primary provider, then walks its fallback
    chain one candidate at a time. A candidate is usable when it is
    configured, active and within its daily and monthly spend limits.
    """

    def __init__(
        self,
        repository: NodeRepository,
        client_factory: Optional[ClientFactory] = None,
        decrypt: Optional[Callable[[Optional[str]], Any]] = None,
        encrypt: Optional[Callable[[Optional[str]], Any]] = None,
        usage_buffer: Optional[UsageBuffer] = None,
        config: Optional[Config] = None
    ):
        """
        Initialize provider registry.

        Args:
            repository: Provider settings, usage and spend persistence
            client_factory: Builds a client from (settings, decrypted key)
            decrypt: Credential decryption (sync or async)
            encrypt: Credential encryption (sync or async)
            usage_buffer: Usage log buffer
            config: Engine configuration
        """
        self.config = config or get_config()
        self.repository = repository
        self.client_factory = client_factory or partial(
            create_litellm_client,
            timeout=self.config.PROVIDER_TIMEOUT,
            requests_per_minute=self.config.PROVIDER_REQUESTS_PER_MINUTE
        )
        self.decrypt = decrypt or _identity
        self.encrypt = encrypt or _identity
        self.usage_buffer = usage_buffer or UsageBuffer(
            repository,
            buffer_size=self.config.USAGE_BUFFER_SIZE,
            flush_interval=self.config.USAGE_FLUSH_INTERVAL,
            history_size=self.config.USAGE_HISTORY_SIZE
        )
        self.default_provider = self.config.DEFAULT_PROVIDER

        self.providers: Dict[str, ProviderConfig] = {}
        self.clients: Dict[str, ProviderClient] = {}
        self._usage_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_providers(self) -> int:
        """
        Load every provider from the repository and build its client.

        A provider that fails to load is logged and skipped.

        Returns:
            Number of providers loaded
        """
        try:
            configs = await self.repository.get_provider_settings()
        except Exception as e:
            logger.error(f"Failed to load provider settings: {str(e)}")
            return 0

        for config in configs:
            try:
                await self._register(config)
            except Exception as e:
                logger.error(f"Failed to load provider {config.provider}: {str(e)}")

        logger.info(f"Loaded {len(self.clients)} providers: {', '.join(self.clients)}")
        return len(self.clients)

    async def _register(self, config: ProviderConfig, api_key: Optional[str] = None) -> ProviderClient:
        if api_key is None:
            api_key = await _resolve(self.decrypt(config.api_key_encrypted))
        client = self.client_factory(config, api_key)
        self.providers[config.provider] = config
        self.clients[config.provider] = client
        return client

    # ------------------------------------------------------------------
    # Lookup & availability
    # ------------------------------------------------------------------

    async def get_provider(self, name: str, options: Optional[Dict[str, Any]] = None) -> ProviderClient:
        """
        Get a usable client.

        Raises:
            ProviderNotConfiguredError: If the provider is unknown or inactive
            QuotaExceededError: If a spend limit has been reached
        """
        config = self.providers.get(name)
        client = self.clients.get(name)
        if config is None or client is None or not config.active:
            raise ProviderNotConfiguredError(f"Provider {name} not configured", provider=name)

        availability = await self.check_provider_availability(name)
        if not availability["available"]:
            raise QuotaExceededError(availability["reason"], provider=name)

        return client

    async def check_provider_availability(self, provider: str) -> Dict[str, Any]:
        """
        Check configuration, activity and spend limits.

        Returns:
            ``{"available": bool, "reason": str | None}``
        """
        config = self.providers.get(provider)
        if config is None:
            return {"available": False, "reason": f"Provider {provider} not configured"}
        if not config.active:
            return {"available": False, "reason": f"Provider {provider} is inactive"}

        try:
            if config.daily_limit:
                usage = await self.repository.get_provider_usage(provider, UsageWindow.DAY)
                if usage.get("cost", 0) >= config.daily_limit:
                    return {"available": False, "reason": f"Daily limit exceeded for provider {provider}"}

            if config.monthly_limit:
                usage = await self.repository.get_provider_usage(provider, UsageWindow.MONTH)
                spent = max(usage.get("cost", 0), config.current_usage)
                if spent >= config.monthly_limit:
                    return {"available": False, "reason": f"Monthly limit exceeded for provider {provider}"}
        except Exception as e:
            logger.warning(f"Could not read usage for {provider}, treating as available: {str(e)}")

        return {"available": True, "reason": None}

    async def check_provider_health(self, provider: str) -> Dict[str, Any]:
        """Run a client health check and record its time."""
        client = self.clients.get(provider)
        if client is None:
            return {"status": "not_configured", "provider": provider}

        result = await client.check_health()

        checked_at = datetime.now(timezone.utc)
        self.providers[provider].last_health_check = checked_at
        try:
            await self.repository.update_provider_settings(provider, {"last_health_check": checked_at})
        except Exception as e:
            logger.warning(f"Failed to record health check for {provider}: {str(e)}")

        return result

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def get_task_defaults(self) -> Dict[str, Dict[str, Optional[str]]]:
        """Built-in task defaults overridden by configured ones."""
        defaults = {task: dict(default) for task, default in workflows.TASK_DEFAULTS.items()}
        for config in self.providers.values():
            for task, default in config.task_defaults.items():
                if isinstance(default, TaskDefault):
                    default = default.model_dump()
                defaults[task] = dict(default)
        return defaults

    def get_task_default(self, task: Optional[str], complexity: Optional[str] = None) -> Dict[str, Optional[str]]:
        defaults = self.get_task_defaults()
        if task in defaults:
            return defaults[task]

        provider = self.default_provider
        model = workflows.COMPLEXITY_MODELS.get(provider, {}).get(complexity) if complexity else None
        return {"provider": provider, "model": model}

    def get_default_model(self, provider: str) -> Optional[str]:
        config = self.providers.get(provider)
        if config is not None:
            if config.default_model:
                return config.default_model
            if config.models:
                return config.models[0]
        models = workflows.get_default_models_for_provider(provider)
        return models[0] if models else None

    def get_fallback_providers(self, provider: str, task: Optional[str] = None) -> List[Dict[str, Optional[str]]]:
        """
        Fallback chain for a primary provider.

        A primary provider's configured ``fallback_models`` (``"provider"``
        or ``"provider/model"`` entries) replace the built-in chain.
        """
        config = self.providers.get(provider)
        if config is not None and config.fallback_models:
            chain = []
            for entry in config.fallback_models:
                name, _, model = entry.partition("/")
                chain.append({"provider": name, "model": model or None})
            return chain
        return workflows.get_fallback_providers(provider, task)

    async def select_provider_for_task(self, task: Optional[str], options: Optional[Dict[str, Any]] = None) -> ProviderSelection:
        """
        Choose the provider and model for a task.

        Args:
            task: Task identifier
            options: Options; ``fallback_allowed`` (default True) and
                ``complexity`` are honoured

        Returns:
            Selection, tagged with ``fallback`` and ``original_provider``
            when a fallback was chosen

        Raises:
            AllProvidersFailedError: If no candidate is usable
        """
        options = options or {}
        fallback_allowed = options.get("fallback_allowed", True)

        default = self.get_task_default(task, options.get("complexity"))
        primary = default["provider"]
        attempts = []

        try:
            client = await self.get_provider(primary, options)
            return ProviderSelection(
                provider=primary,
                model=default.get("model") or self.get_default_model(primary),
                client=client
            )
        except ProviderError as e:
            logger.warning(f"Primary provider {primary} unavailable for {task}: {e.message}")
            attempts.append({"provider": primary, "error": e.message})

        if fallback_allowed:
            for candidate in self.get_fallback_providers(primary, task):
                name = candidate["provider"]
                try:
                    client = await self.get_provider(name, options)
                except ProviderError as e:
                    logger.warning(f"Fallback provider {name} unavailable for {task}: {e.message}")
                    attempts.append({"provider": name, "error": e.message})
                    continue

                logger.info(f"Falling back from {primary} to {name} for {task}")
                return ProviderSelection(
                    provider=name,
                    model=candidate.get("model") or self.get_default_model(name),
                    client=client,
                    fallback=True,
                    original_provider=primary
                )

        raise AllProvidersFailedError(task, attempts)

    async def _select(self, request: GenerationRequest) -> ProviderSelection:
        if request.provider:
            client = await self.get_provider(request.provider, request.options)
            return ProviderSelection(
                provider=request.provider,
                model=request.model or self.get_default_model(request.provider),
                client=client
            )

        selection = await self.select_provider_for_task(
            request.task,
            {**request.options, "fallback_allowed": request.fallback_allowed}
        )
        if request.model and not selection.fallback:
            selection.model = request.model
        return selection

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize_request(self, config: Union[GenerationRequest, Dict[str, Any]]) -> GenerationRequest:
        return normalize_request(config)

    def normalize_response(self, raw: Any, provider: Optional[str], model: Optional[str]) -> GenerationResponse:
        return normalize_response(raw, provider, model)

    def normalize_finish_reason(self, reason: Optional[str]) -> str:
        return normalize_finish_reason(reason)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @staticmethod
    def _client_request(request: GenerationRequest, selection: ProviderSelection) -> Dict[str, Any]:
        return {
            "task": request.task,
            "prompt": request.prompt,
            "model": selection.model,
            "options": request.options
        }

    @staticmethod
    def _as_engine_error(error: Exception, selection: Optional[ProviderSelection], request: GenerationRequest):
        if isinstance(error, GenerationEngineError) and not isinstance(error, ProviderError):
            return error
        provider = selection.provider if selection else request.provider
        model = selection.model if selection else request.model
        return classify_provider_error(error, provider, model)

    async def generate(self, config: Union[GenerationRequest, Dict[str, Any]]) -> GenerationResponse:
        """
        Run one generation against the selected provider.

        Args:
            config: Request dict or GenerationRequest

        Returns:
            Normalized response

        Raises:
            ProviderError: Classified failure of the acting provider
            AllProvidersFailedError: If no provider could be selected
        """
        request = self.normalize_request(config)
        options = request.options
        start_time = time.time()
        selection = None

        try:
            selection = await self._select(request)

            retry_handler = RetryHandler.from_options(options)
            raw = await retry_handler.execute_with_retry(
                selection.client.generate,
                self._client_request(request, selection),
                provider=selection.provider,
                model=selection.model
            )

            response = self.normalize_response(raw, selection.provider, selection.model)
            response.fallback = selection.fallback
            response.original_provider = selection.original_provider
            latency_ms = int((time.time() - start_time) * 1000)
            if not response.usage.latency_ms:
                response.usage.latency_ms = latency_ms

        except Exception as e:
            error = self._as_engine_error(e, selection, request)
            await self.track_usage(UsageLogEntry(
                provider=(selection.provider if selection else request.provider) or "unknown",
                model=(selection.model if selection else request.model) or "unknown",
                task=request.task,
                success=False,
                error=error.message,
                latency_ms=int((time.time() - start_time) * 1000),
                vertical=options.get("vertical"),
                mode=options.get("mode")
            ))
            if error is e:
                raise
            raise error from e

        await self.track_usage(UsageLogEntry(
            provider=selection.provider,
            model=selection.model,
            task=request.task,
            tokens_input=response.usage.input_tokens,
            tokens_output=response.usage.output_tokens,
            tokens_total=response.usage.total_tokens,
            cost=response.usage.cost,
            latency_ms=latency_ms,
            success=True,
            vertical=options.get("vertical"),
            mode=options.get("mode")
        ))
        return response

    async def generate_stream(
        self,
        config: Union[GenerationRequest, Dict[str, Any]],
        sink: Optional[EventSink] = None
    ) -> GenerationResponse:
        """
        Stream one generation, forwarding content chunks to the sink.

        One completion event carrying the final usage follows the content
        events. If the sink's consumer goes away, remaining chunks are
        not read.

        Returns:
            Response with the accumulated content

        Raises:
            StreamingUnsupportedError: If the selected client cannot stream
            ProviderError: Classified failure of the acting provider
        """
        request = self.normalize_request(config)
        options = request.options
        start_time = time.time()
        selection = None
        parts: List[str] = []
        usage = GenerationUsage()
        completion_metadata: Dict[str, Any] = {}

        try:
            selection = await self._select(request)
            if not selection.client.supports_streaming():
                raise StreamingUnsupportedError(selection.provider)

            stream = selection.client.generate_stream(self._client_request(request, selection))
            try:
                async for chunk in stream:
                    normalized = normalize_stream_chunk(chunk, selection.provider)
                    chunk_type = normalized["type"]

                    if chunk_type == "content" and normalized.get("content"):
                        parts.append(normalized["content"])
                        if sink is not None and not await emit_event(
                            sink, EventType.CONTENT,
                            content=normalized["content"],
                            provider=selection.provider
                        ):
                            logger.info(f"Stream consumer gone, stopping {selection.provider} stream")
                            break

                    elif chunk_type == "completion":
                        usage = GenerationUsage(**normalized["usage"])
                        completion_metadata = normalized.get("metadata", {})

                    elif chunk_type == "error":
                        raise RuntimeError(normalized.get("error") or "Stream error")
            finally:
                if hasattr(stream, "aclose"):
                    await stream.aclose()

        except Exception as e:
            error = self._as_engine_error(e, selection, request)
            await self.track_usage(UsageLogEntry(
                provider=(selection.provider if selection else request.provider) or "unknown",
                model=(selection.model if selection else request.model) or "unknown",
                task=request.task,
                success=False,
                error=error.message,
                latency_ms=int((time.time() - start_time) * 1000),
                vertical=options.get("vertical"),
                mode=options.get("mode"),
                streaming=True
            ))
            await emit_event(sink, EventType.ERROR, **ErrorResponse.from_exception(error).model_dump(mode="json"))
            if error is e:
                raise
            raise error from e

        latency_ms = int((time.time() - start_time) * 1000)
        if not usage.latency_ms:
            usage.latency_ms = latency_ms

        await emit_event(
            sink, EventType.COMPLETION,
            provider=selection.provider,
            model=selection.model,
            fallback=selection.fallback,
            usage=usage.model_dump(),
            metadata=completion_metadata
        )

        await self.track_usage(UsageLogEntry(
            provider=selection.provider,
            model=selection.model,
            task=request.task,
            tokens_input=usage.input_tokens,
            tokens_output=usage.output_tokens,
            tokens_total=usage.total_tokens,
            cost=usage.cost,
            latency_ms=latency_ms,
            success=True,
            vertical=options.get("vertical"),
            mode=options.get("mode"),
            streaming=True
        ))

        return GenerationResponse(
            content="".join(parts),
            usage=usage,
            metadata=GenerationMetadata(
                provider=selection.provider,
                model=selection.model,
                finish_reason=completion_metadata.get("finish_reason", "unknown"),
                search_results=completion_metadata.get("search_results", []),
                citations=completion_metadata.get("citations", []),
                related_questions=completion_metadata.get("related_questions", []),
                cache_hit=completion_metadata.get("cache_hit", False)
            ),
            fallback=selection.fallback,
            original_provider=selection.original_provider
        )

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def track_usage(self, entry: UsageLogEntry):
        """
        Record a usage entry and, for paid successes, the provider's spend.

        Failures are logged and never raised.
        """
        try:
            await self.usage_buffer.add(entry)

            if entry.success and entry.cost > 0:
                async with self._usage_lock:
                    config = self.providers.get(entry.provider)
                    if config is not None:
                        config.current_usage += entry.cost
                await self.repository.increment_provider_usage(entry.provider, entry.cost)
        except Exception as e:
            logger.error(f"Failed to track usage for {entry.provider}: {str(e)}")

    def get_usage_stats(self) -> Dict[str, Any]:
        return self.usage_buffer.get_usage_stats()

    # ------------------------------------------------------------------
    # Provider management
    # ------------------------------------------------------------------

    def list_providers(self) -> List[Dict[str, Any]]:
        """Loaded provider settings without credentials."""
        return [config.model_dump(exclude={"api_key_encrypted"}) for config in self.providers.values()]

    async def configure_provider(
        self,
        provider: str,
        api_key: str,
        default_model: Optional[str] = None,
        task_defaults: Optional[Dict[str, Dict[str, str]]] = None,
        limits: Optional[Dict[str, float]] = None,
        models: Optional[List[str]] = None
    ) -> ProviderConfig:
        """
        Test a credential, then create or update the provider's settings.

        Raises:
            ProviderError: If the connection test fails
        """
        known_models = models or workflows.get_default_models_for_provider(provider)
        model = default_model or (known_models[0] if known_models else None)

        test = await self.test_connection(provider, api_key, model)
        if not test["success"]:
            raise classify_provider_error(RuntimeError(test["message"]), provider, model)

        limits = limits or {}
        fields = {
            "api_key_encrypted": await _resolve(self.encrypt(api_key)),
            "default_model": model,
            "models": known_models,
            "task_defaults": task_defaults or {},
            "daily_limit": limits.get("daily"),
            "monthly_limit": limits.get("monthly"),
            "active": True,
            "last_tested": datetime.now(timezone.utc),
            "test_success": True
        }

        existing = await self.repository.get_provider_settings(provider)
        if existing:
            saved = await self.repository.update_provider_settings(provider, fields)
        else:
            saved = await self.repository.create_provider_settings(ProviderConfig(provider=provider, **fields))

        await self._register(saved, api_key)
        logger.info(f"Provider {provider} configured with default model {model}")
        return saved

    async def update_provider(self, provider: str, updates: Dict[str, Any]) -> ProviderConfig:
        """
        Update a loaded provider and rebuild its client.

        A plain ``api_key`` in the updates is encrypted before storage.

        Raises:
            ProviderNotConfiguredError: If the provider is not loaded
        """
        if provider not in self.providers:
            raise ProviderNotConfiguredError(f"Provider {provider} not found", provider=provider)

        updates = dict(updates)
        api_key = updates.pop("api_key", None)
        if api_key is not None:
            updates["api_key_encrypted"] = await _resolve(self.encrypt(api_key))

        updated = await self.repository.update_provider_settings(provider, updates)
        if updated is None:
            raise ProviderNotConfiguredError(f"Provider {provider} not found", provider=provider)

        await self._register(updated, api_key)
        return updated

    async def delete_provider(self, provider: str) -> bool:
        deleted = await self.repository.delete_provider_settings(provider)
        self.providers.pop(provider, None)
        self.clients.pop(provider, None)
        return deleted

    async def test_connection(self, provider: str, api_key: str, model: Optional[str] = None) -> Dict[str, Any]:
        """Test a credential with a temporary client; never raises."""
        if model is None:
            models = workflows.get_default_models_for_provider(provider)
            model = models[0] if models else None

        try:
            client = self.client_factory(
                ProviderConfig(provider=provider, default_model=model, models=[model] if model else []),
                api_key
            )
            result = await client.test_connection()
            return {
                "success": True,
                "message": "Connection successful",
                "provider": provider,
                "model": model,
                "latency": result.get("latency", 0)
            }
        except Exception as e:
            logger.warning(f"Connection test failed for {provider}: {str(e)}")
            return {
                "success": False,
                "message": str(e) or "Connection failed",
                "provider": provider,
                "model": model,
                "error": str(e)
            }

    def get_available_models(self, provider: str) -> List[str]:
        """
        Raises:
            ProviderNotConfiguredError: If the provider is not loaded
        """
        config = self.providers.get(provider)
        if config is None:
            raise ProviderNotConfiguredError(f"Provider {provider} not configured", provider=provider)
        return list(config.models)

    def get_default_models_for_provider(self, provider: str) -> List[str]:
        return workflows.get_default_models_for_provider(provider)

    def estimate_cost(self, tokens: int, provider: str, model: Optional[str] = None) -> float:
        client = self.clients.get(provider)
        if client is None:
            return 0.0
        return client.estimate_cost(tokens, model or self.get_default_model(provider))

    async def close(self):
        """Flush pending usage and stop the flush timer."""
        await self.usage_buffer.close()
