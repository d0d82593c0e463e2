"""
Generation tree models.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NodeType(str, Enum):
    """Kinds of generated content stored in the tree."""
    IDEA = "idea"
    RESEARCH = "research"
    TITLE = "title"
    SYNOPSIS = "synopsis"
    OUTLINE = "outline"
    BLOG = "blog"
    SOCIAL = "social"
    IMAGE = "image"


class GenerationNode(BaseModel):
    """One generated output in a generation tree."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Node id")
    type: str = Field(default=NodeType.BLOG.value, description="Node type")
    content: str = Field(default="", description="Generated content")
    mode: Optional[str] = Field(None, description="Generation mode that produced the node")
    vertical: str = Field(default="all", description="Target vertical")

    # Tree structure
    parent_id: Optional[str] = Field(None, description="Parent node id")
    root_id: Optional[str] = Field(None, description="Tree root id")
    is_root: bool = Field(default=False, description="Whether the node is a tree root")

    # Provenance
    provider: Optional[str] = Field(None, description="Provider that generated the content")
    model: Optional[str] = Field(None, description="Model that generated the content")
    prompt: Optional[str] = Field(None, description="Prompt used")
    context: Optional[str] = Field(None, description="Serialized context snapshot")
    tokens_used: int = Field(default=0, ge=0, description="Total tokens used")
    cost: float = Field(default=0.0, ge=0.0, description="Generation cost")

    # State
    selected: bool = Field(default=False, description="Selected among siblings")
    visible: bool = Field(default=True, description="Visible in the tree")
    deleted: bool = Field(default=False, description="Soft-deleted")

    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    updated_at: Optional[datetime] = Field(None, description="Last update time")

    class Config:
        use_enum_values = True
