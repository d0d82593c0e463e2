"""
Generation request, response and configuration models.

This module defines the normalized request/response contract shared
by every provider and the configuration accepted by the orchestrator.
"""

from enum import Enum
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field


class GenerationMode(str, Enum):
    """Orchestrator generation modes."""
    DIRECT = "direct"
    STRUCTURED = "structured"
    MULTI_VERTICAL = "multi_vertical"
    BATCH = "batch"
    EDIT_EXISTING = "edit_existing"


class VerticalMode(str, Enum):
    """Multi-vertical sub-modes."""
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    ADAPTIVE = "adaptive"


class FinishReason(str, Enum):
    """Canonical finish reasons."""
    COMPLETED = "completed"
    MAX_TOKENS = "max_tokens"
    TOOL_CALLS = "tool_calls"
    FILTERED = "filtered"
    STOP_SEQUENCE = "stop_sequence"
    INCOMPLETE = "incomplete"
    UNKNOWN = "unknown"


class GenerationRequest(BaseModel):
    """Provider-independent generation request."""

    task: Optional[str] = Field(None, description="Task identifier")
    prompt: Optional[str] = Field(None, description="User prompt")
    provider: Optional[str] = Field(None, description="Explicit provider override")
    model: Optional[str] = Field(None, description="Explicit model override")
    options: Dict[str, Any] = Field(default_factory=dict, description="Canonical and pass-through options")
    fallback_allowed: bool = Field(default=True, description="Whether fallback providers may be used")


class GenerationUsage(BaseModel):
    """Token and cost accounting for one generation."""

    input_tokens: int = Field(default=0, ge=0, description="Prompt tokens")
    output_tokens: int = Field(default=0, ge=0, description="Completion tokens")
    reasoning_tokens: int = Field(default=0, ge=0, description="Reasoning tokens")
    thinking_tokens: int = Field(default=0, ge=0, description="Thinking tokens")
    cache_creation_tokens: int = Field(default=0, ge=0, description="Tokens written to prompt cache")
    cache_read_tokens: int = Field(default=0, ge=0, description="Tokens read from prompt cache")
    total_tokens: int = Field(default=0, ge=0, description="Total tokens")
    cost: float = Field(default=0.0, ge=0.0, description="Cost in currency units")
    latency_ms: int = Field(default=0, ge=0, description="Call latency in milliseconds")

    def computed_total(self) -> int:
        """Sum of the token categories that count toward the total."""
        return self.input_tokens + self.output_tokens + self.reasoning_tokens + self.thinking_tokens


class GenerationMetadata(BaseModel):
    """Provider metadata attached to a response."""

    provider: Optional[str] = Field(None, description="Provider that acted")
    model: Optional[str] = Field(None, description="Model that acted")
    finish_reason: str = Field(default=FinishReason.UNKNOWN.value, description="Canonical finish reason")

    reasoning: Optional[Any] = Field(None, description="Reasoning trace")
    thinking: Optional[Any] = Field(None, description="Thinking trace")
    search_results: List[Any] = Field(default_factory=list, description="Search results")
    citations: List[Any] = Field(default_factory=list, description="Citations")
    related_questions: List[Any] = Field(default_factory=list, description="Related questions")
    safety_ratings: Optional[Any] = Field(None, description="Vendor safety ratings")

    cache_hit: bool = Field(default=False, description="Prompt cache hit")
    tool_calls: List[Any] = Field(default_factory=list, description="Tool calls")
    response_id: Optional[str] = Field(None, description="Vendor response id")

    errors: List[Any] = Field(default_factory=list, description="Vendor-reported errors")
    warnings: List[Any] = Field(default_factory=list, description="Vendor-reported warnings")


class GenerationResponse(BaseModel):
    """Normalized generation response."""

    content: str = Field(default="", description="Generated content")
    usage: GenerationUsage = Field(default_factory=GenerationUsage, description="Usage accounting")
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata, description="Provider metadata")
    fallback: bool = Field(default=False, description="Whether a fallback provider served the request")
    original_provider: Optional[str] = Field(None, description="Primary provider when falling back")

    @property
    def provider(self) -> Optional[str]:
        return self.metadata.provider

    @property
    def model(self) -> Optional[str]:
        return self.metadata.model


class GenerationConfig(BaseModel):
    """Request accepted by the orchestrator."""

    task: Optional[str] = Field(None, description="Task identifier")
    mode: Optional[GenerationMode] = Field(default=GenerationMode.DIRECT.value, description="Generation mode")
    prompt: Optional[str] = Field(None, description="Prompt")
    prompts: Optional[Any] = Field(None, description="Prompts for batch mode")
    context: Optional[Any] = Field(None, description="Context string or context selection")

    provider: Optional[str] = Field(None, description="Explicit provider override")
    model: Optional[str] = Field(None, description="Explicit model override")
    fallback_allowed: bool = Field(default=True, description="Whether fallback providers may be used")

    output_count: int = Field(default=1, ge=1, description="Alternatives to generate in direct mode")
    vertical: Union[str, List[str]] = Field(default="all", description="Target vertical(s)")
    vertical_mode: VerticalMode = Field(default=VerticalMode.PARALLEL.value, description="Multi-vertical sub-mode")
    skip_steps: List[str] = Field(default_factory=list, description="Skippable workflow steps to omit")

    parent_node_id: Optional[str] = Field(None, description="Parent node for new outputs")
    root_node_id: Optional[str] = Field(None, description="Existing tree root")

    existing_content: Optional[str] = Field(None, description="Content to edit")
    edit_instructions: Optional[str] = Field(None, description="Edit instructions")

    options: Dict[str, Any] = Field(default_factory=dict, description="Generation options")

    class Config:
        use_enum_values = True
