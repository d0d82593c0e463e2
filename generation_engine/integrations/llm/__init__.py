"""
LLM integration module.

This module provides the provider client contract, the LiteLLM-backed
client, and the normalization, retry and rate limiting helpers shared
by every provider.
"""

from .base import ProviderClient, ClientFactory
from .litellm_client import LiteLLMProviderClient, create_litellm_client
from .retry_handler import RetryHandler
from .rate_limiter import RateLimiter
from .normalization import (
    normalize_options,
    normalize_request,
    normalize_usage,
    normalize_response,
    normalize_finish_reason,
    normalize_stream_chunk,
    classify_provider_error
)

__all__ = [
    'ProviderClient',
    'ClientFactory',
    'LiteLLMProviderClient',
    'create_litellm_client',
    'RetryHandler',
    'RateLimiter',
    'normalize_options',
    'normalize_request',
    'normalize_usage',
    'normalize_response',
    'normalize_finish_reason',
    'normalize_stream_chunk',
    'classify_provider_error'
]
