"""
Retry handler for provider calls.

This module provides retry logic with exponential backoff for
transient provider failures. Only failures classified as retryable
(rate limits, timeouts, server errors) are retried.
"""

import asyncio
import logging
import random
from typing import Any, Callable, Dict, Optional

from ...core.models.errors import ProviderError
from .normalization import classify_provider_error, DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY_MS


logger = logging.getLogger(__name__)


class RetryHandler:
    """
    Retry handler with exponential backoff.

    Delays grow as ``base_delay * backoff_multiplier ** attempt``,
    capped at ``max_delay``, with optional 10% jitter.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_RETRY_DELAY_MS / 1000.0,
        max_delay: float = 60.0,
        backoff_multiplier: float = 2.0,
        jitter: bool = True
    ):
        """
        Initialize retry handler.

        Args:
            max_retries: Maximum number of retries after the first attempt
            base_delay: Base delay in seconds
            max_delay: Maximum delay in seconds
            backoff_multiplier: Backoff multiplier
            jitter: Whether to add jitter
        """
        self.max_retries = max(0, int(max_retries))
        self.base_delay = max(0.0, float(base_delay))
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter

    @classmethod
    def from_options(cls, options: Dict[str, Any], **kwargs) -> 'RetryHandler':
        """Build a handler from canonical options (``retry_delay`` in milliseconds)."""
        max_retries = options.get("max_retries")
        retry_delay = options.get("retry_delay")
        return cls(
            max_retries=DEFAULT_MAX_RETRIES if max_retries is None else max_retries,
            base_delay=(DEFAULT_RETRY_DELAY_MS if retry_delay is None else retry_delay) / 1000.0,
            **kwargs
        )

    async def execute_with_retry(
        self,
        func: Callable,
        *args,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        **kwargs
    ) -> Any:
        """
        Execute function with retry logic.

        Args:
            func: Coroutine function to execute
            *args: Function arguments
            provider: Provider used to classify failures
            model: Model used to classify failures
            **kwargs: Function keyword arguments

        Returns:
            Function result

        Raises:
            ProviderError: Classified failure of the last attempt
        """
        for attempt in range(self.max_retries + 1):
            try:
                result = await func(*args, **kwargs)
                if attempt > 0:
                    logger.info(f"Call to {provider} succeeded after {attempt} retries")
                return result

            except Exception as e:
                error = classify_provider_error(e, provider, model)

                if not self._is_retryable_error(error):
                    raise error from e

                if attempt >= self.max_retries:
                    logger.error(f"All retries exhausted for {provider}. Last error: {error.message}")
                    raise error from e

                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Attempt {attempt + 1} against {provider} failed: {error.message}. "
                    f"Retrying in {delay:.2f} seconds..."
                )
                await asyncio.sleep(delay)

    def _is_retryable_error(self, error: ProviderError) -> bool:
        return bool(error.retryable)

    def _calculate_delay(self, attempt: int) -> float:
        delay = self.base_delay * (self.backoff_multiplier ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            jitter_range = delay * 0.1
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    def get_retry_stats(self) -> dict:
        """Get retry handler settings."""
        return {
            "max_retries": self.max_retries,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "backoff_multiplier": self.backoff_multiplier,
            "jitter_enabled": self.jitter
        }
