"""
Generation services.

Provider selection, orchestration, tree management, context assembly,
usage tracking and progress events.
"""

from .provider_registry import ProviderRegistry
from .orchestrator import GenerationOrchestrator, aggregate_usage
from .tree_store import TreeStore
from .context_assembler import ContextAssembler, estimate_tokens
from .usage_tracker import UsageBuffer
from .events import EventSink, QueueEventSink, SSEEventSink, emit_event

__all__ = [
    'ProviderRegistry',
    'GenerationOrchestrator',
    'aggregate_usage',
    'TreeStore',
    'ContextAssembler',
    'estimate_tokens',
    'UsageBuffer',
    'EventSink',
    'QueueEventSink',
    'SSEEventSink',
    'emit_event'
]
