"""
Tests for request, response and error normalization.
"""

import asyncio

import pytest

from generation_engine.core.models.errors import (
    AuthenticationError,
    ContentFilteredError,
    ModelNotFoundError,
    ProviderTimeoutError,
    QuotaExceededError,
    RateLimitedError,
    ServerError,
    UnknownProviderError
)
from generation_engine.integrations.llm.normalization import (
    classify_provider_error,
    normalize_finish_reason,
    normalize_request,
    normalize_response,
    normalize_stream_chunk,
    normalize_usage
)


@pytest.mark.parametrize("reason", ["STOP", "stop", "end_turn"])
def test_finish_reason_completed(reason):
    """Vendor stop reasons map to completed."""
    assert normalize_finish_reason(reason) == "completed"


def test_finish_reason_other_values():
    """Test the remaining finish reason mappings."""
    assert normalize_finish_reason(None) == "unknown"
    assert normalize_finish_reason("length") == "max_tokens"
    assert normalize_finish_reason("MAX_TOKENS") == "max_tokens"
    assert normalize_finish_reason("tool_use") == "tool_calls"
    assert normalize_finish_reason("SAFETY") == "filtered"
    assert normalize_finish_reason("something_new") == "something_new"


def test_normalize_request_keeps_legacy_keys():
    """Legacy option keys stay next to their canonical names."""
    request = normalize_request({
        "task": "title_generation",
        "prompt": "Hotels",
        "options": {
            "maxTokens": 500,
            "systemInstruction": "Be brief",
            "reasoning": {"effort": "high"},
            "stop": "END",
            "vendorFlag": True
        }
    })
    options = request.options

    assert options["max_tokens"] == 500
    assert options["maxTokens"] == 500
    assert options["system_instruction"] == "Be brief"
    assert options["systemInstruction"] == "Be brief"
    assert options["reasoning_effort"] == "high"
    assert options["stop_sequences"] == ["END"]
    assert options["vendorFlag"] is True


def test_normalize_request_retry_defaults():
    """Retry settings are filled when absent."""
    request = normalize_request({"task": "t", "prompt": "p"})

    assert request.options["max_retries"] == 3
    assert request.options["retry_delay"] == 1000
    assert request.fallback_allowed is True

    request = normalize_request({"prompt": "p", "fallbackAllowed": False, "options": {"maxRetries": 0}})
    assert request.options["max_retries"] == 0
    assert request.fallback_allowed is False


def test_normalize_response_tolerates_missing_fields():
    """Null content and missing usage normalize to empty values."""
    response = normalize_response({"content": None}, "openai", "gpt-5")

    assert response.content == ""
    assert response.usage.total_tokens == 0
    assert response.usage.cost == 0.0
    assert response.metadata.finish_reason == "unknown"
    assert response.provider == "openai"
    assert response.model == "gpt-5"


def test_normalize_response_recomputes_total():
    """A missing total is recomputed from the token categories."""
    response = normalize_response({
        "content": "Hello",
        "finish_reason": "end_turn",
        "usage": {"input_tokens": 12, "output_tokens": 8, "cache_read_input_tokens": 4}
    }, "anthropic", "claude-sonnet-4")

    assert response.usage.input_tokens == 12
    assert response.usage.output_tokens == 8
    assert response.usage.cache_read_tokens == 4
    assert response.usage.total_tokens == 20
    assert response.metadata.finish_reason == "completed"


def test_normalize_usage_vendor_shapes():
    """Vendor usage records map onto canonical fields."""
    openai = normalize_usage({
        "prompt_tokens": 100,
        "completion_tokens": 50,
        "completion_tokens_details": {"reasoning_tokens": 30},
        "prompt_tokens_details": {"cached_tokens": 40}
    }, "openai")
    assert openai.reasoning_tokens == 30
    assert openai.cache_read_tokens == 40
    assert openai.total_tokens == 180

    google = normalize_usage({
        "promptTokenCount": 7,
        "candidatesTokenCount": 3,
        "thoughtsTokenCount": 2,
        "totalTokenCount": 12
    }, "google")
    assert google.input_tokens == 7
    assert google.thinking_tokens == 2
    assert google.total_tokens == 12


def test_normalize_stream_chunks():
    """Test content and completion chunk normalization."""
    content = normalize_stream_chunk({"type": "content", "content": "Hel"}, "openai")
    assert content["type"] == "content"
    assert content["content"] == "Hel"

    completion = normalize_stream_chunk({
        "type": "completion",
        "finish_reason": "stop",
        "usage": {"prompt_tokens": 3, "completion_tokens": 4}
    }, "openai")
    assert completion["usage"]["total_tokens"] == 7
    assert completion["metadata"]["finish_reason"] == "completed"


@pytest.mark.parametrize("message, error_class", [
    ("Rate limit reached (429)", RateLimitedError),
    ("401 invalid api key", AuthenticationError),
    ("insufficient_quota for this month", QuotaExceededError),
    ("content was blocked by safety system", ContentFilteredError),
    ("request timed out", ProviderTimeoutError),
    ("502 bad gateway", ServerError),
    ("model gpt-9 does not exist: not found", ModelNotFoundError),
    ("something odd", UnknownProviderError)
])
def test_classify_by_message(message, error_class):
    """Unclassified errors are typed by their message."""
    error = classify_provider_error(RuntimeError(message), "openai", "gpt-5")

    assert isinstance(error, error_class)
    assert error.provider == "openai"
    assert error.model == "gpt-5"


def test_classify_keeps_classified_errors():
    """Already classified errors pass through with provider filled in."""
    original = QuotaExceededError("Daily limit exceeded for provider openai")
    error = classify_provider_error(original, "openai", "gpt-5")

    assert error is original
    assert error.provider == "openai"


def test_classify_asyncio_timeout():
    """asyncio timeouts classify as retryable timeouts."""
    error = classify_provider_error(asyncio.TimeoutError(), "google", None)

    assert isinstance(error, ProviderTimeoutError)
    assert error.retryable is True
