"""
Request, response and error normalization.

This module maps vendor-specific option names, usage fields, finish
reasons and failures onto the engine's canonical vocabulary.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Union

from litellm import exceptions as litellm_exceptions

from ...core.models.errors import (
    ProviderError,
    ProviderErrorType,
    PROVIDER_ERROR_CLASSES
)
from ...core.models.generation import (
    FinishReason,
    GenerationMetadata,
    GenerationRequest,
    GenerationResponse,
    GenerationUsage
)


logger = logging.getLogger(__name__)


DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000

# canonical key -> legacy and vendor spellings, first match wins
OPTION_ALIASES = {
    "max_tokens": ["maxTokens", "max_output_tokens", "maxOutputTokens", "max_completion_tokens"],
    "top_p": ["topP"],
    "top_k": ["topK"],
    "stop_sequences": ["stopSequences", "stop"],
    "enable_caching": ["enableCaching", "enablePromptCaching", "prompt_caching"],
    "enable_web_search": ["enableWebSearch", "webSearch", "web_search"],
    "reasoning_effort": ["reasoningEffort"],
    "thinking_budget": ["thinkingBudget", "budget_tokens"],
    "response_schema": ["responseSchema", "schema"],
    "response_format": ["responseFormat", "format"],
    "images": ["image_urls", "imageUrls"],
    "search_domains": ["searchDomains", "domains", "search_domain_filter"],
    "search_recency": ["searchRecency", "recency", "search_recency_filter"],
    "academic_mode": ["academicMode", "academic"],
    "system_instruction": ["systemInstruction", "system_prompt", "systemPrompt", "system"],
    "conversation_history": ["conversationHistory", "history"],
    "max_retries": ["maxRetries"],
    "retry_delay": ["retryDelay"]
}

FINISH_REASON_MAP = {
    "stop": FinishReason.COMPLETED.value,
    "end_turn": FinishReason.COMPLETED.value,
    "completed": FinishReason.COMPLETED.value,
    "length": FinishReason.MAX_TOKENS.value,
    "max_tokens": FinishReason.MAX_TOKENS.value,
    "function_call": FinishReason.TOOL_CALLS.value,
    "tool_calls": FinishReason.TOOL_CALLS.value,
    "tool_use": FinishReason.TOOL_CALLS.value,
    "content_filter": FinishReason.FILTERED.value,
    "safety": FinishReason.FILTERED.value,
    "recitation": FinishReason.FILTERED.value,
    "stop_sequence": FinishReason.STOP_SEQUENCE.value,
    "incomplete": FinishReason.INCOMPLETE.value
}


def _get(source: Any, *keys: str) -> Any:
    """Return the first non-None value among keys of a dict or object."""
    if source is None:
        return None
    for key in keys:
        if isinstance(source, dict):
            value = source.get(key)
        else:
            value = getattr(source, key, None)
        if value is not None:
            return value
    return None


def _as_dict(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if hasattr(raw, "model_dump"):
        return raw.model_dump()
    if hasattr(raw, "__dict__"):
        return dict(vars(raw))
    return {"content": raw}


def _int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    if isinstance(value, dict):
        value = value.get("total_cost", 0)
    try:
        return max(0.0, float(value or 0))
    except (TypeError, ValueError):
        return 0.0


# ------------------------------------------------------------------
# Requests
# ------------------------------------------------------------------

def normalize_options(options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Map legacy and vendor option names onto canonical keys.

    Original keys are kept alongside the canonical ones and unknown keys
    pass through untouched.

    Args:
        options: Caller options

    Returns:
        New options dict with canonical keys filled in
    """
    normalized = dict(options or {})

    for canonical, aliases in OPTION_ALIASES.items():
        if normalized.get(canonical) is not None:
            continue
        for alias in aliases:
            if normalized.get(alias) is not None:
                normalized[canonical] = normalized[alias]
                break

    # nested vendor shapes
    reasoning = normalized.get("reasoning")
    if normalized.get("reasoning_effort") is None and isinstance(reasoning, dict):
        if reasoning.get("effort") is not None:
            normalized["reasoning_effort"] = reasoning["effort"]

    thinking = normalized.get("thinking") or normalized.get("thinkingConfig")
    if normalized.get("thinking_budget") is None and isinstance(thinking, dict):
        budget = _get(thinking, "budget_tokens", "budgetTokens", "thinkingBudget")
        if budget is not None:
            normalized["thinking_budget"] = budget

    if isinstance(normalized.get("stop_sequences"), str):
        normalized["stop_sequences"] = [normalized["stop_sequences"]]

    if normalized.get("max_retries") is None:
        normalized["max_retries"] = DEFAULT_MAX_RETRIES
    if normalized.get("retry_delay") is None:
        normalized["retry_delay"] = DEFAULT_RETRY_DELAY_MS

    return normalized


def normalize_request(config: Union[GenerationRequest, Dict[str, Any]]) -> GenerationRequest:
    """
    Build a canonical GenerationRequest from a request dict or model.

    Args:
        config: Request with task, prompt, provider, model and options

    Returns:
        Normalized request
    """
    if isinstance(config, GenerationRequest):
        data = config.model_dump()
    else:
        data = dict(config or {})

    fallback_allowed = data.get("fallback_allowed")
    if fallback_allowed is None:
        fallback_allowed = data.get("fallbackAllowed", True)

    return GenerationRequest(
        task=data.get("task"),
        prompt=data.get("prompt"),
        provider=data.get("provider"),
        model=data.get("model"),
        options=normalize_options(data.get("options")),
        fallback_allowed=bool(fallback_allowed)
    )


# ------------------------------------------------------------------
# Usage
# ------------------------------------------------------------------

def _generic_usage(usage: Any) -> Dict[str, Any]:
    return {
        "input_tokens": _int(_get(usage, "input_tokens", "inputTokens", "prompt_tokens", "promptTokens")),
        "output_tokens": _int(_get(usage, "output_tokens", "outputTokens", "completion_tokens", "completionTokens")),
        "reasoning_tokens": _int(_get(usage, "reasoning_tokens", "reasoningTokens")),
        "thinking_tokens": _int(_get(usage, "thinking_tokens", "thinkingTokens")),
        "cache_creation_tokens": _int(_get(
            usage, "cache_creation_tokens", "cacheCreationTokens",
            "cache_creation_input_tokens", "cacheCreationInputTokens"
        )),
        "cache_read_tokens": _int(_get(
            usage, "cache_read_tokens", "cacheReadTokens",
            "cache_read_input_tokens", "cacheReadInputTokens"
        )),
        "total_tokens": _int(_get(usage, "total_tokens", "totalTokens")),
        "cost": _float(_get(usage, "cost")),
        "latency_ms": _int(_get(usage, "latency_ms", "latencyMs"))
    }


def _openai_usage(usage: Any) -> Dict[str, Any]:
    completion_details = _get(usage, "completion_tokens_details", "output_tokens_details")
    prompt_details = _get(usage, "prompt_tokens_details", "input_tokens_details")
    return {
        "input_tokens": _int(_get(usage, "prompt_tokens", "input_tokens")),
        "output_tokens": _int(_get(usage, "completion_tokens", "output_tokens")),
        "reasoning_tokens": _int(_get(completion_details, "reasoning_tokens")),
        "cache_read_tokens": _int(_get(prompt_details, "cached_tokens"))
    }


def _anthropic_usage(usage: Any) -> Dict[str, Any]:
    return {
        "input_tokens": _int(_get(usage, "input_tokens", "prompt_tokens")),
        "output_tokens": _int(_get(usage, "output_tokens", "completion_tokens")),
        "cache_creation_tokens": _int(_get(usage, "cache_creation_input_tokens")),
        "cache_read_tokens": _int(_get(usage, "cache_read_input_tokens"))
    }


def _google_usage(usage: Any) -> Dict[str, Any]:
    return {
        "input_tokens": _int(_get(usage, "promptTokenCount", "prompt_token_count")),
        "output_tokens": _int(_get(usage, "candidatesTokenCount", "candidates_token_count")),
        "thinking_tokens": _int(_get(usage, "thoughtsTokenCount", "thoughts_token_count")),
        "cache_read_tokens": _int(_get(usage, "cachedContentTokenCount", "cached_content_token_count")),
        "total_tokens": _int(_get(usage, "totalTokenCount", "total_token_count"))
    }


def _perplexity_usage(usage: Any) -> Dict[str, Any]:
    return {
        "input_tokens": _int(_get(usage, "prompt_tokens")),
        "output_tokens": _int(_get(usage, "completion_tokens")),
        "reasoning_tokens": _int(_get(usage, "reasoning_tokens")),
        "cost": _float(_get(usage, "cost"))
    }


USAGE_EXTRACTORS = {
    "openai": _openai_usage,
    "anthropic": _anthropic_usage,
    "google": _google_usage,
    "perplexity": _perplexity_usage
}


def normalize_usage(usage: Any, provider: Optional[str] = None) -> GenerationUsage:
    """
    Extract canonical usage from a vendor usage record.

    The vendor extractor wins where it finds a value; the alias-based
    generic extractor fills everything else. A missing total is
    recomputed from its parts.
    """
    if usage is None:
        return GenerationUsage()

    fields = _generic_usage(usage)
    extractor = USAGE_EXTRACTORS.get(provider)
    if extractor:
        for key, value in extractor(usage).items():
            if value:
                fields[key] = value

    normalized = GenerationUsage(**fields)
    if not normalized.total_tokens:
        normalized.total_tokens = normalized.computed_total()
    return normalized


# ------------------------------------------------------------------
# Responses
# ------------------------------------------------------------------

def normalize_finish_reason(reason: Optional[str]) -> str:
    """Map a vendor finish reason onto the canonical set."""
    if reason is None:
        return FinishReason.UNKNOWN.value
    if not isinstance(reason, str):
        reason = getattr(reason, "value", str(reason))
    return FINISH_REASON_MAP.get(reason.lower(), reason)


def normalize_response(raw: Any, provider: Optional[str], model: Optional[str]) -> GenerationResponse:
    """
    Build a canonical GenerationResponse from a raw client response.

    Args:
        raw: Raw response dict from a provider client
        provider: Provider that acted
        model: Model that acted

    Returns:
        Normalized response
    """
    data = _as_dict(raw)
    metadata = data.get("metadata") or {}

    content = data.get("content")
    if content is None:
        content = ""
    elif not isinstance(content, str):
        content = str(content)

    finish_reason = _get(metadata, "finish_reason", "finishReason")
    if finish_reason is None:
        finish_reason = _get(data, "finish_reason", "finishReason", "stop_reason")

    return GenerationResponse(
        content=content,
        usage=normalize_usage(data.get("usage"), provider),
        metadata=GenerationMetadata(
            provider=provider,
            model=model,
            finish_reason=normalize_finish_reason(finish_reason),
            reasoning=_get(metadata, "reasoning") or data.get("reasoning"),
            thinking=_get(metadata, "thinking") or data.get("thinking"),
            search_results=_get(metadata, "search_results", "searchResults") or data.get("search_results") or [],
            citations=_get(metadata, "citations") or data.get("citations") or [],
            related_questions=_get(metadata, "related_questions", "relatedQuestions")
            or data.get("related_questions") or [],
            safety_ratings=_get(metadata, "safety_ratings", "safetyRatings") or data.get("safety_ratings"),
            cache_hit=bool(_get(metadata, "cache_hit", "cacheHit")),
            tool_calls=_get(metadata, "tool_calls", "toolCalls") or data.get("tool_calls") or [],
            response_id=_get(metadata, "response_id", "responseId") or data.get("id"),
            errors=_get(metadata, "errors") or [],
            warnings=_get(metadata, "warnings") or []
        )
    )


def normalize_stream_chunk(chunk: Any, provider: Optional[str] = None) -> Dict[str, Any]:
    """
    Normalize one raw streaming chunk.

    Content chunks carry ``content``; the completion chunk carries
    canonical usage and metadata; unknown chunk types pass through
    under ``data``.
    """
    data = _as_dict(chunk)
    chunk_type = data.get("type")
    normalized = {
        "type": chunk_type,
        "timestamp": int(time.time() * 1000)
    }

    if chunk_type == "content":
        delta = data.get("delta") or {}
        normalized["content"] = data.get("content") or _get(delta, "content") or data.get("text") or ""
        if data.get("usage"):
            normalized["usage"] = normalize_usage(data["usage"], provider).model_dump()

    elif chunk_type == "completion":
        normalized["usage"] = normalize_usage(data.get("usage"), provider).model_dump()
        normalized["metadata"] = {
            "search_results": _get(data, "search_results", "searchResults") or [],
            "citations": data.get("citations") or [],
            "related_questions": _get(data, "related_questions", "relatedQuestions") or [],
            "cache_hit": bool(_get(data, "cache_hit", "cacheHit")),
            "finish_reason": normalize_finish_reason(_get(data, "finish_reason", "finishReason"))
        }

    elif chunk_type in ("reasoning", "thinking"):
        normalized["content"] = data.get("reasoning") or data.get("thinking") or data.get("content") or ""

    elif chunk_type == "error":
        normalized["error"] = data.get("error")
        normalized["error_type"] = _get(data, "error_type", "errorType")

    else:
        normalized["data"] = data

    return normalized


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------

LITELLM_ERROR_TYPES = [
    (litellm_exceptions.RateLimitError, ProviderErrorType.RATE_LIMIT),
    (litellm_exceptions.AuthenticationError, ProviderErrorType.AUTHENTICATION),
    (litellm_exceptions.ContentPolicyViolationError, ProviderErrorType.CONTENT_FILTERED),
    (litellm_exceptions.Timeout, ProviderErrorType.TIMEOUT),
    (litellm_exceptions.NotFoundError, ProviderErrorType.MODEL_NOT_FOUND),
    (litellm_exceptions.ServiceUnavailableError, ProviderErrorType.SERVER_ERROR),
    (litellm_exceptions.InternalServerError, ProviderErrorType.SERVER_ERROR),
    (litellm_exceptions.APIConnectionError, ProviderErrorType.SERVER_ERROR)
]


def _classify_message(message: str) -> ProviderErrorType:
    message = message.lower()

    if "rate limit" in message or "429" in message:
        return ProviderErrorType.RATE_LIMIT
    if "authentication" in message or "401" in message or "invalid api key" in message:
        return ProviderErrorType.AUTHENTICATION
    if "quota" in message or "insufficient_quota" in message:
        return ProviderErrorType.QUOTA_EXCEEDED
    if "content" in message and "blocked" in message:
        return ProviderErrorType.CONTENT_FILTERED
    if "timeout" in message or "timed out" in message or "504" in message:
        return ProviderErrorType.TIMEOUT
    if "server" in message or "500" in message or "502" in message or "503" in message:
        return ProviderErrorType.SERVER_ERROR
    if "model" in message and "not" in message:
        return ProviderErrorType.MODEL_NOT_FOUND
    return ProviderErrorType.UNKNOWN


def classify_provider_error(
    error: BaseException,
    provider: Optional[str] = None,
    model: Optional[str] = None
) -> ProviderError:
    """
    Classify any failure into a typed ProviderError.

    Already-classified errors are returned as-is (with the provider
    filled in when missing). litellm exception classes are mapped
    directly; anything else is classified by its message.

    Args:
        error: Failure to classify
        provider: Provider that was acting
        model: Model that was acting

    Returns:
        Typed provider error
    """
    if isinstance(error, ProviderError):
        if error.provider is None:
            error.provider = provider
            error.details["provider"] = provider
        if error.model is None:
            error.model = model
            error.details["model"] = model
        return error

    error_type = None
    for exception_class, mapped_type in LITELLM_ERROR_TYPES:
        if isinstance(error, exception_class):
            error_type = mapped_type
            break

    if error_type is None and isinstance(error, asyncio.TimeoutError):
        error_type = ProviderErrorType.TIMEOUT

    if error_type is None:
        error_type = _classify_message(str(error))

    error_class = PROVIDER_ERROR_CLASSES[error_type]
    return error_class(
        str(error) or error.__class__.__name__,
        provider=provider,
        model=model,
        original_error=error
    )
