"""
Node repository interface.

The engine consumes persistence through this interface only. Every
method is a coroutine so implementations may perform network I/O.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any

from ..core.models.provider import ProviderConfig
from ..core.models.tree import GenerationNode
from ..core.models.usage import UsageLogEntry, UsageWindow


class NodeRepository(ABC):
    """Abstract persistence for providers, generation nodes, usage and context sources."""

    # Provider settings

    @abstractmethod
    async def get_provider_settings(self, provider: Optional[str] = None) -> List[ProviderConfig]:
        """Return all provider settings, or those of one provider."""

    @abstractmethod
    async def create_provider_settings(self, config: ProviderConfig) -> ProviderConfig:
        """Persist new provider settings."""

    @abstractmethod
    async def update_provider_settings(self, provider: str, updates: Dict[str, Any]) -> Optional[ProviderConfig]:
        """Apply field updates to provider settings; None if absent."""

    @abstractmethod
    async def delete_provider_settings(self, provider: str) -> bool:
        """Delete provider settings; False if absent."""

    # Generation nodes

    @abstractmethod
    async def create_generation_node(self, node: GenerationNode) -> GenerationNode:
        """Persist a new node."""

    @abstractmethod
    async def update_generation_node(self, node_id: str, updates: Dict[str, Any]) -> Optional[GenerationNode]:
        """Apply field updates to a node; None if absent."""

    @abstractmethod
    async def get_generation_node(self, node_id: str) -> Optional[GenerationNode]:
        """Fetch one node, including soft-deleted ones."""

    @abstractmethod
    async def get_generation_tree(self, root_id: str) -> List[GenerationNode]:
        """Fetch every node whose root is ``root_id``, including the root."""

    @abstractmethod
    async def get_node_children(self, node_id: str) -> List[GenerationNode]:
        """Fetch the direct children of a node."""

    # Usage

    @abstractmethod
    async def get_provider_usage(self, provider: str, window: UsageWindow) -> Dict[str, Any]:
        """Return ``{"cost", "tokens", "requests"}`` for the current day or month."""

    @abstractmethod
    async def increment_provider_usage(self, provider: str, amount: float) -> None:
        """Add spend to the provider's running counter."""

    @abstractmethod
    async def batch_log_usage(self, entries: List[UsageLogEntry]) -> None:
        """Persist a batch of usage log entries."""

    # Context sources

    @abstractmethod
    async def get_style_guide(self, guide_type: str, vertical: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Fetch the brand guide or a vertical guide."""

    @abstractmethod
    async def get_style_guide_by_id(self, guide_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a style or persona guide by id."""

    @abstractmethod
    async def get_all_blogs(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Fetch the most recent posts."""

    @abstractmethod
    async def get_blogs_by_vertical(self, vertical: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Fetch the most recent posts of a vertical."""

    @abstractmethod
    async def get_blogs_by_ids(self, ids: List[str]) -> List[Dict[str, Any]]:
        """Fetch posts by id."""

    @abstractmethod
    async def get_reference_images(self, image_type: str, ids: List[str]) -> List[Dict[str, Any]]:
        """Fetch reference images of one type by id."""

    async def ping(self) -> bool:
        """Check that the store is reachable."""
        await self.get_provider_settings()
        return True
