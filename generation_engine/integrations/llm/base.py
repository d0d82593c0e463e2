"""
Provider client contract.

Every vendor integration implements this interface. Requests are plain
dicts of the form ``{"task", "prompt", "model", "options"}`` with
canonical option keys; responses are raw dicts that the registry
normalizes (``content``, ``usage``, ``finish_reason`` and optional
vendor metadata).
"""

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Optional

from ...core.models.errors import StreamingUnsupportedError


logger = logging.getLogger(__name__)


class ProviderClient(ABC):
    """Abstract base for vendor clients."""

    def __init__(self, provider: str, default_model: Optional[str] = None):
        self.provider = provider
        self.default_model = default_model

    @abstractmethod
    async def generate(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one generation.

        Args:
            request: Request dict with task, prompt, model and options

        Returns:
            Raw response dict

        Raises:
            ProviderError: If the vendor call fails
        """

    async def generate_stream(self, request: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream one generation as raw chunks.

        Yields dicts with a ``type`` of content, reasoning, thinking,
        completion or error.
        """
        raise StreamingUnsupportedError(self.provider)
        yield  # pragma: no cover

    def supports_streaming(self) -> bool:
        return False

    async def test_connection(self) -> Dict[str, Any]:
        """Send a minimal request and report latency."""
        start_time = time.time()
        await self.generate({
            "task": "connection_test",
            "prompt": "Hello",
            "model": self.default_model,
            "options": {"max_tokens": 5}
        })
        return {
            "success": True,
            "latency": int((time.time() - start_time) * 1000)
        }

    async def check_health(self) -> Dict[str, Any]:
        """Report client health without raising."""
        try:
            result = await self.test_connection()
            return {
                "status": "healthy",
                "provider": self.provider,
                "latency": result.get("latency", 0),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        except Exception as e:
            logger.warning(f"Health check failed for {self.provider}: {str(e)}")
            return {
                "status": "unhealthy",
                "provider": self.provider,
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    def estimate_cost(self, tokens: int, model: Optional[str] = None) -> float:
        return 0.0


# (provider config, decrypted api key) -> client
ClientFactory = Callable[[Any, Optional[str]], ProviderClient]
