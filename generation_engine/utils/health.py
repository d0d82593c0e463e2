"""
Health check utilities for the generation engine.

This module provides health check functionality for
monitoring the repository, provider clients and the host process.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import psutil

from ..repositories.base import NodeRepository


logger = logging.getLogger(__name__)


class HealthChecker:
    """Health checker for engine components."""

    def __init__(self, repository: NodeRepository, registry: Optional[Any] = None):
        self.repository = repository
        self.registry = registry

    async def check_repository(self) -> Dict[str, Any]:
        """Check node repository connectivity."""
        start_time = time.time()
        try:
            await self.repository.ping()
            return {
                "status": "healthy",
                "response_time": time.time() - start_time
            }

        except Exception as e:
            logger.error(f"Repository health check failed: {str(e)}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    async def check_providers(self) -> Dict[str, Any]:
        """Check every loaded provider client."""
        if self.registry is None or not self.registry.clients:
            return {"status": "not_configured"}

        names = list(self.registry.clients)
        results = await asyncio.gather(
            *(self.registry.check_provider_health(name) for name in names),
            return_exceptions=True
        )

        providers = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"Provider health check failed for {name}: {str(result)}")
                providers[name] = {"status": "unhealthy", "error": str(result)}
            else:
                providers[name] = result
        return providers

    def get_system_metrics(self) -> Dict[str, Any]:
        """Get process and host metrics."""
        try:
            process = psutil.Process()
            memory = psutil.virtual_memory()

            return {
                "status": "healthy",
                "cpu_percent": psutil.cpu_percent(interval=None),
                "memory_percent": memory.percent,
                "memory_available": memory.available,
                "process_memory": process.memory_info().rss,
                "uptime": time.time() - process.create_time()
            }

        except Exception as e:
            logger.error(f"System metrics collection failed: {str(e)}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    async def get_health_status(self) -> Dict[str, Any]:
        """Get overall health status."""
        repository = await self.check_repository()
        providers = await self.check_providers()

        if providers.get("status") == "not_configured":
            provider_statuses = []
        else:
            provider_statuses = [p.get("status") for p in providers.values()]
        healthy = repository["status"] == "healthy" and all(
            status == "healthy" for status in provider_statuses
        )

        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "repository": repository,
                "providers": providers,
                "system": self.get_system_metrics()
            }
        }
