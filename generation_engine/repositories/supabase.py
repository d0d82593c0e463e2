"""
Supabase-backed node repository.

This module persists providers, generation nodes and usage logs in
Supabase tables and reads context sources (style guides, posts and
reference images) from them. The Supabase client is synchronous, so
each query runs in a worker thread.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from supabase import create_client, Client

from ..core.models.errors import ConfigurationError
from ..core.models.provider import ProviderConfig
from ..core.models.tree import GenerationNode
from ..core.models.usage import UsageLogEntry, UsageWindow
from .base import NodeRepository


logger = logging.getLogger(__name__)


PROVIDER_SETTINGS_TABLE = "provider_settings"
GENERATION_NODES_TABLE = "generation_nodes"
USAGE_LOGS_TABLE = "usage_logs"
STYLE_GUIDES_TABLE = "style_guides"
BLOG_POSTS_TABLE = "blog_posts"
REFERENCE_IMAGES_TABLE = "reference_images"

INCREMENT_USAGE_FUNCTION = "increment_provider_usage"

# Installed once per database; a single update statement per increment.
INCREMENT_USAGE_SQL = """
create or replace function increment_provider_usage(p_provider text, p_amount numeric)
returns numeric
language sql
as $$
    update provider_settings
    set current_usage = coalesce(current_usage, 0) + p_amount
    where provider = p_provider
    returning current_usage;
$$;
"""


def create_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """
    Create a Supabase client from arguments or environment.

    Raises:
        ConfigurationError: If credentials are missing
    """
    url = url or os.environ.get('SUPABASE_URL')
    key = key or os.environ.get('SUPABASE_KEY') or os.environ.get('SUPABASE_ANON_KEY')

    if not url or not key:
        raise ConfigurationError("Supabase credentials not found (SUPABASE_URL and SUPABASE_KEY required)",
                                 config_key="SUPABASE_URL")

    client = create_client(url, key)
    logger.info("Supabase client initialized successfully")
    return client


def _window_start(window: UsageWindow) -> datetime:
    now = datetime.now(timezone.utc)
    if UsageWindow(window) == UsageWindow.DAY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class SupabaseNodeRepository(NodeRepository):
    """Repository backed by Supabase tables."""

    def __init__(self, client: Client):
        self.client = client

    async def _execute(self, query) -> List[Dict[str, Any]]:
        response = await asyncio.to_thread(query.execute)
        return response.data or []

    # Provider settings

    async def get_provider_settings(self, provider: Optional[str] = None) -> List[ProviderConfig]:
        query = self.client.table(PROVIDER_SETTINGS_TABLE).select("*")
        if provider is not None:
            query = query.eq("provider", provider)
        rows = await self._execute(query)
        return [ProviderConfig(**row) for row in rows]

    async def create_provider_settings(self, config: ProviderConfig) -> ProviderConfig:
        rows = await self._execute(
            self.client.table(PROVIDER_SETTINGS_TABLE).insert(config.model_dump(mode="json"))
        )
        return ProviderConfig(**rows[0]) if rows else config

    async def update_provider_settings(self, provider: str, updates: Dict[str, Any]) -> Optional[ProviderConfig]:
        payload = ProviderConfig(provider=provider, **updates).model_dump(mode="json", include=set(updates))
        rows = await self._execute(
            self.client.table(PROVIDER_SETTINGS_TABLE).update(payload).eq("provider", provider)
        )
        return ProviderConfig(**rows[0]) if rows else None

    async def delete_provider_settings(self, provider: str) -> bool:
        rows = await self._execute(
            self.client.table(PROVIDER_SETTINGS_TABLE).delete().eq("provider", provider)
        )
        return len(rows) > 0

    # Generation nodes

    async def create_generation_node(self, node: GenerationNode) -> GenerationNode:
        rows = await self._execute(
            self.client.table(GENERATION_NODES_TABLE).insert(node.model_dump(mode="json"))
        )
        return GenerationNode(**rows[0]) if rows else node

    async def update_generation_node(self, node_id: str, updates: Dict[str, Any]) -> Optional[GenerationNode]:
        payload = {**updates, "updated_at": datetime.now(timezone.utc).isoformat()}
        rows = await self._execute(
            self.client.table(GENERATION_NODES_TABLE).update(payload).eq("id", node_id)
        )
        return GenerationNode(**rows[0]) if rows else None

    async def get_generation_node(self, node_id: str) -> Optional[GenerationNode]:
        rows = await self._execute(
            self.client.table(GENERATION_NODES_TABLE).select("*").eq("id", node_id).limit(1)
        )
        return GenerationNode(**rows[0]) if rows else None

    async def get_generation_tree(self, root_id: str) -> List[GenerationNode]:
        rows = await self._execute(
            self.client.table(GENERATION_NODES_TABLE).select("*").eq("root_id", root_id).order("created_at")
        )
        return [GenerationNode(**row) for row in rows]

    async def get_node_children(self, node_id: str) -> List[GenerationNode]:
        rows = await self._execute(
            self.client.table(GENERATION_NODES_TABLE).select("*").eq("parent_id", node_id).order("created_at")
        )
        return [GenerationNode(**row) for row in rows]

    # Usage

    async def get_provider_usage(self, provider: str, window: UsageWindow) -> Dict[str, Any]:
        rows = await self._execute(
            self.client.table(USAGE_LOGS_TABLE)
            .select("cost,tokens_total")
            .eq("provider", provider)
            .eq("success", True)
            .gte("timestamp", _window_start(window).isoformat())
        )
        return {
            "cost": sum(float(row.get("cost") or 0) for row in rows),
            "tokens": sum(int(row.get("tokens_total") or 0) for row in rows),
            "requests": len(rows)
        }

    async def increment_provider_usage(self, provider: str, amount: float) -> None:
        response = await asyncio.to_thread(
            self.client.rpc(INCREMENT_USAGE_FUNCTION, {"p_provider": provider, "p_amount": amount}).execute
        )
        if response.data is None or response.data == []:
            logger.warning(f"Cannot increment usage for unknown provider: {provider}")

    async def batch_log_usage(self, entries: List[UsageLogEntry]) -> None:
        if not entries:
            return
        await self._execute(
            self.client.table(USAGE_LOGS_TABLE).insert([entry.model_dump(mode="json") for entry in entries])
        )

    # Context sources

    async def get_style_guide(self, guide_type: str, vertical: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query = self.client.table(STYLE_GUIDES_TABLE).select("*").eq("type", guide_type).eq("active", True)
        if vertical is not None:
            query = query.eq("vertical", vertical)
        rows = await self._execute(query.limit(1))
        return rows[0] if rows else None

    async def get_style_guide_by_id(self, guide_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._execute(self.client.table(STYLE_GUIDES_TABLE).select("*").eq("id", guide_id).limit(1))
        return rows[0] if rows else None

    async def get_all_blogs(self, limit: int = 50) -> List[Dict[str, Any]]:
        return await self._execute(
            self.client.table(BLOG_POSTS_TABLE).select("*").order("created_at", desc=True).limit(limit)
        )

    async def get_blogs_by_vertical(self, vertical: str, limit: int = 20) -> List[Dict[str, Any]]:
        return await self._execute(
            self.client.table(BLOG_POSTS_TABLE)
            .select("*")
            .eq("vertical", vertical)
            .order("created_at", desc=True)
            .limit(limit)
        )

    async def get_blogs_by_ids(self, ids: List[str]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        return await self._execute(self.client.table(BLOG_POSTS_TABLE).select("*").in_("id", ids))

    async def get_reference_images(self, image_type: str, ids: List[str]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        return await self._execute(
            self.client.table(REFERENCE_IMAGES_TABLE).select("*").eq("type", image_type).in_("id", ids)
        )

    async def ping(self) -> bool:
        await self._execute(self.client.table(PROVIDER_SETTINGS_TABLE).select("provider").limit(1))
        return True
