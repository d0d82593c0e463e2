"""
Persistence for provider settings, generation nodes, usage logs and
context sources.
"""

from .base import NodeRepository
from .memory import InMemoryNodeRepository
from .supabase import SupabaseNodeRepository, create_supabase_client

__all__ = [
    'NodeRepository',
    'InMemoryNodeRepository',
    'SupabaseNodeRepository',
    'create_supabase_client'
]
