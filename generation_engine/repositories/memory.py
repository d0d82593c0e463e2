"""
In-memory node repository.

Nodes live in a dict keyed by id; tree edges are the ``parent_id`` and
``root_id`` fields. Returned models are copies, so callers never alias
stored state.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from ..core.models.provider import ProviderConfig
from ..core.models.tree import GenerationNode
from ..core.models.usage import UsageLogEntry, UsageWindow
from .base import NodeRepository


logger = logging.getLogger(__name__)


class InMemoryNodeRepository(NodeRepository):
    """Process-local repository for development and tests."""

    def __init__(
        self,
        providers: Optional[List[ProviderConfig]] = None,
        style_guides: Optional[List[Dict[str, Any]]] = None,
        blogs: Optional[List[Dict[str, Any]]] = None,
        reference_images: Optional[List[Dict[str, Any]]] = None
    ):
        self.providers: Dict[str, ProviderConfig] = {p.provider: p.model_copy(deep=True) for p in providers or []}
        self.nodes: Dict[str, GenerationNode] = {}
        self.usage_logs: List[UsageLogEntry] = []
        self.style_guides: List[Dict[str, Any]] = list(style_guides or [])
        self.blogs: List[Dict[str, Any]] = list(blogs or [])
        self.reference_images: List[Dict[str, Any]] = list(reference_images or [])

    # Provider settings

    async def get_provider_settings(self, provider: Optional[str] = None) -> List[ProviderConfig]:
        if provider is not None:
            config = self.providers.get(provider)
            return [config.model_copy(deep=True)] if config else []
        return [config.model_copy(deep=True) for config in self.providers.values()]

    async def create_provider_settings(self, config: ProviderConfig) -> ProviderConfig:
        self.providers[config.provider] = config.model_copy(deep=True)
        return config.model_copy(deep=True)

    async def update_provider_settings(self, provider: str, updates: Dict[str, Any]) -> Optional[ProviderConfig]:
        existing = self.providers.get(provider)
        if existing is None:
            return None
        updated = ProviderConfig(**{**existing.model_dump(), **updates})
        self.providers[provider] = updated
        return updated.model_copy(deep=True)

    async def delete_provider_settings(self, provider: str) -> bool:
        return self.providers.pop(provider, None) is not None

    # Generation nodes

    async def create_generation_node(self, node: GenerationNode) -> GenerationNode:
        self.nodes[node.id] = node.model_copy(deep=True)
        return node.model_copy(deep=True)

    async def update_generation_node(self, node_id: str, updates: Dict[str, Any]) -> Optional[GenerationNode]:
        existing = self.nodes.get(node_id)
        if existing is None:
            return None
        updated = existing.model_copy(update={**updates, "updated_at": datetime.now(timezone.utc)})
        self.nodes[node_id] = updated
        return updated.model_copy(deep=True)

    async def get_generation_node(self, node_id: str) -> Optional[GenerationNode]:
        node = self.nodes.get(node_id)
        return node.model_copy(deep=True) if node else None

    async def get_generation_tree(self, root_id: str) -> List[GenerationNode]:
        return [
            node.model_copy(deep=True)
            for node in self.nodes.values()
            if node.root_id == root_id or node.id == root_id
        ]

    async def get_node_children(self, node_id: str) -> List[GenerationNode]:
        return [node.model_copy(deep=True) for node in self.nodes.values() if node.parent_id == node_id]

    # Usage

    async def get_provider_usage(self, provider: str, window: UsageWindow) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        window = UsageWindow(window)

        def in_window(entry: UsageLogEntry) -> bool:
            timestamp = entry.timestamp
            if window == UsageWindow.DAY:
                return timestamp.date() == now.date()
            return (timestamp.year, timestamp.month) == (now.year, now.month)

        entries = [e for e in self.usage_logs if e.provider == provider and e.success and in_window(e)]
        return {
            "cost": sum(e.cost for e in entries),
            "tokens": sum(e.tokens_total for e in entries),
            "requests": len(entries)
        }

    async def increment_provider_usage(self, provider: str, amount: float) -> None:
        config = self.providers.get(provider)
        if config is not None:
            config.current_usage += amount

    async def batch_log_usage(self, entries: List[UsageLogEntry]) -> None:
        self.usage_logs.extend(entries)

    # Context sources

    async def get_style_guide(self, guide_type: str, vertical: Optional[str] = None) -> Optional[Dict[str, Any]]:
        for guide in self.style_guides:
            if guide.get("type") != guide_type:
                continue
            if vertical is None or guide.get("vertical") == vertical:
                return guide
        return None

    async def get_style_guide_by_id(self, guide_id: str) -> Optional[Dict[str, Any]]:
        return next((g for g in self.style_guides if g.get("id") == guide_id), None)

    def _recent(self, posts: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
        return sorted(posts, key=lambda p: str(p.get("created_at", "")), reverse=True)[:limit]

    async def get_all_blogs(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self._recent(self.blogs, limit)

    async def get_blogs_by_vertical(self, vertical: str, limit: int = 20) -> List[Dict[str, Any]]:
        return self._recent([b for b in self.blogs if b.get("vertical") == vertical], limit)

    async def get_blogs_by_ids(self, ids: List[str]) -> List[Dict[str, Any]]:
        by_id = {b.get("id"): b for b in self.blogs}
        return [by_id[i] for i in ids if i in by_id]

    async def get_reference_images(self, image_type: str, ids: List[str]) -> List[Dict[str, Any]]:
        return [img for img in self.reference_images if img.get("type") == image_type and img.get("id") in ids]
