"""
LiteLLM provider client.

This module implements the provider client contract on top of
LiteLLM, translating canonical options into LiteLLM parameters and
LiteLLM responses into raw response dicts.
"""

import logging
import time
from typing import Optional, Dict, Any, List, AsyncIterator

import litellm
from litellm import acompletion

from ...core.models.provider import ProviderConfig
from .base import ProviderClient
from .normalization import classify_provider_error
from .rate_limiter import RateLimiter


logger = logging.getLogger(__name__)


# provider id -> LiteLLM model prefix
LITELLM_PREFIXES = {
    "openai": "openai",
    "anthropic": "anthropic",
    "google": "gemini",
    "perplexity": "perplexity"
}

STREAMING_PROVIDERS = {"openai", "anthropic", "google", "perplexity"}


class LiteLLMProviderClient(ProviderClient):
    """
    Provider client backed by LiteLLM.

    One instance serves one provider with one credential. Calls are
    paced by an optional shared rate limiter.
    """

    def __init__(
        self,
        provider: str,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 60,
        rate_limiter: Optional[RateLimiter] = None
    ):
        """
        Initialize LiteLLM client.

        Args:
            provider: Provider identifier
            api_key: Decrypted API key
            default_model: Model used when a request names none
            base_url: Base URL override
            timeout: Request timeout in seconds
            rate_limiter: Limiter shared by concurrent callers
        """
        super().__init__(provider, default_model)
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.rate_limiter = rate_limiter

        logger.info(f"LiteLLMProviderClient initialized for {provider} with timeout: {timeout}s")

    def _model_string(self, model: Optional[str]) -> str:
        model = model or self.default_model
        prefix = LITELLM_PREFIXES.get(self.provider, self.provider)
        if model and model.startswith(f"{prefix}/"):
            return model
        return f"{prefix}/{model}"

    def _build_messages(self, prompt: str, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        messages = []

        system_parts = []
        if options.get("system_instruction"):
            system_parts.append(options["system_instruction"])
        if options.get("context"):
            system_parts.append(f"Context:\n{options['context']}")
        if system_parts:
            messages.append({"role": "system", "content": "\n\n".join(system_parts)})

        for message in options.get("conversation_history") or []:
            messages.append({"role": message.get("role", "user"), "content": message.get("content", "")})

        images = options.get("images") or []
        if images:
            content = [{"type": "text", "text": prompt or ""}]
            for image in images:
                url = image if isinstance(image, str) else image.get("url")
                content.append({"type": "image_url", "image_url": {"url": url}})
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": prompt or ""})

        return messages

    def _build_params(self, request: Dict[str, Any]) -> Dict[str, Any]:
        options = request.get("options") or {}

        params = {
            "model": self._model_string(request.get("model")),
            "messages": self._build_messages(request.get("prompt"), options),
            "timeout": self.timeout,
            "drop_params": True
        }

        if options.get("temperature") is not None:
            params["temperature"] = options["temperature"]
        if options.get("max_tokens") is not None:
            params["max_tokens"] = options["max_tokens"]
        if options.get("top_p") is not None:
            params["top_p"] = options["top_p"]
        if options.get("top_k") is not None:
            params["top_k"] = options["top_k"]
        if options.get("stop_sequences"):
            params["stop"] = options["stop_sequences"]

        if options.get("reasoning_effort"):
            params["reasoning_effort"] = options["reasoning_effort"]
        if options.get("thinking_budget"):
            params["thinking"] = {"type": "enabled", "budget_tokens": options["thinking_budget"]}

        if options.get("response_schema"):
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": options["response_schema"]}
            }
        elif options.get("response_format"):
            response_format = options["response_format"]
            if isinstance(response_format, str):
                response_format = {"type": response_format}
            params["response_format"] = response_format

        if options.get("enable_web_search"):
            params["web_search_options"] = {"search_context_size": "medium"}
        if options.get("search_domains"):
            params["search_domain_filter"] = options["search_domains"]
        if options.get("search_recency"):
            params["search_recency_filter"] = options["search_recency"]
        if options.get("academic_mode"):
            params["search_mode"] = "academic"

        if self.api_key:
            params["api_key"] = self.api_key
        if self.base_url:
            params["api_base"] = self.base_url

        return params

    def _compute_cost(self, response: Any) -> float:
        try:
            return float(litellm.completion_cost(completion_response=response) or 0.0)
        except Exception as e:
            logger.debug(f"No pricing available for {self.provider}: {str(e)}")
            return 0.0

    @staticmethod
    def _usage_dict(usage: Any) -> Dict[str, Any]:
        if usage is None:
            return {}
        if hasattr(usage, "model_dump"):
            return usage.model_dump()
        if isinstance(usage, dict):
            return dict(usage)
        return {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0),
            "completion_tokens": getattr(usage, "completion_tokens", 0),
            "total_tokens": getattr(usage, "total_tokens", 0)
        }

    async def generate(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate content using LiteLLM.

        Args:
            request: Request dict with task, prompt, model and options

        Returns:
            Raw response dict

        Raises:
            ProviderError: If generation fails
        """
        params = self._build_params(request)

        if self.rate_limiter:
            await self.rate_limiter.acquire()

        start_time = time.time()
        try:
            response = await acompletion(**params)
        except Exception as e:
            logger.error(f"{self.provider} generation failed: {str(e)}")
            raise classify_provider_error(e, self.provider, request.get("model")) from e

        latency_ms = int((time.time() - start_time) * 1000)

        choice = response.choices[0]
        message = choice.message

        usage = self._usage_dict(getattr(response, "usage", None))
        usage["cost"] = self._compute_cost(response)
        usage["latency_ms"] = latency_ms

        tool_calls = getattr(message, "tool_calls", None) or []

        return {
            "id": getattr(response, "id", None),
            "content": message.content,
            "finish_reason": choice.finish_reason,
            "usage": usage,
            "reasoning": getattr(message, "reasoning_content", None),
            "thinking": getattr(message, "thinking_blocks", None),
            "citations": getattr(response, "citations", None),
            "search_results": getattr(response, "search_results", None),
            "tool_calls": [
                call.model_dump() if hasattr(call, "model_dump") else call
                for call in tool_calls
            ]
        }

    async def generate_stream(self, request: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """Stream content chunks, then one completion chunk with usage."""
        params = self._build_params(request)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}

        if self.rate_limiter:
            await self.rate_limiter.acquire()

        try:
            stream = await acompletion(**params)

            finish_reason = None
            usage = None
            async for chunk in stream:
                if getattr(chunk, "usage", None):
                    usage = self._usage_dict(chunk.usage)

                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    yield {"type": "reasoning", "reasoning": reasoning}

                if delta.content:
                    yield {"type": "content", "content": delta.content}

        except Exception as e:
            logger.error(f"{self.provider} streaming failed: {str(e)}")
            raise classify_provider_error(e, self.provider, request.get("model")) from e

        yield {
            "type": "completion",
            "usage": usage or {},
            "finish_reason": finish_reason
        }

    def supports_streaming(self) -> bool:
        return self.provider in STREAMING_PROVIDERS

    def estimate_cost(self, tokens: int, model: Optional[str] = None) -> float:
        """Estimate cost for a token count split evenly between input and output."""
        try:
            prompt_cost, completion_cost = litellm.cost_per_token(
                model=self._model_string(model),
                prompt_tokens=tokens // 2,
                completion_tokens=tokens - tokens // 2
            )
            return float(prompt_cost + completion_cost)
        except Exception as e:
            logger.warning(f"Cost estimate unavailable for {self.provider}/{model}: {str(e)}")
            return 0.0


def create_litellm_client(
    config: ProviderConfig,
    api_key: Optional[str],
    timeout: int = 60,
    requests_per_minute: Optional[int] = None
) -> LiteLLMProviderClient:
    """Client factory used by the provider registry."""
    rate_limiter = RateLimiter(requests_per_minute) if requests_per_minute else None
    default_model = config.default_model or (config.models[0] if config.models else None)
    return LiteLLMProviderClient(
        provider=config.provider,
        api_key=api_key,
        default_model=default_model,
        timeout=timeout,
        rate_limiter=rate_limiter
    )
