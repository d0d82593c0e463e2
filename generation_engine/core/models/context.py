"""
Context selection and assembled context models.

A context selection names which style guides, previous posts and
reference images should be folded into the generation context.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field


class PreviousContentMode(str, Enum):
    """How previous posts are chosen."""
    NONE = "none"
    ALL = "all"
    VERTICAL = "vertical"
    SELECTED = "selected"


class StyleGuideSelection(BaseModel):
    """Style guides to include."""

    brand: bool = Field(default=False, description="Include the brand guide")
    vertical: List[str] = Field(default_factory=list, description="Vertical guides to include")
    writing_style: List[str] = Field(default_factory=list, description="Writing style guide ids")
    persona: List[str] = Field(default_factory=list, description="Persona guide ids")


class IncludeElements(BaseModel):
    """Per-post elements rendered into the context."""

    titles: bool = Field(default=False)
    synopsis: bool = Field(default=False)
    tags: bool = Field(default=False)
    content: bool = Field(default=False)
    metadata: bool = Field(default=False)


class PreviousContentSelection(BaseModel):
    """Previous posts to include."""

    mode: PreviousContentMode = Field(default=PreviousContentMode.NONE, description="Selection mode")
    vertical_filter: Optional[str] = Field(None, description="Vertical for vertical mode")
    items: List[str] = Field(default_factory=list, description="Post ids for selected mode")
    include_elements: IncludeElements = Field(default_factory=IncludeElements, description="Elements to render")

    class Config:
        use_enum_values = True


class ReferenceImageSelection(BaseModel):
    """Reference image ids to describe."""

    style: List[str] = Field(default_factory=list, description="Style reference ids")
    logo: List[str] = Field(default_factory=list, description="Logo ids")
    persona: List[str] = Field(default_factory=list, description="Persona image ids")


class ContextConfig(BaseModel):
    """Context selection."""

    style_guides: Optional[StyleGuideSelection] = Field(None, description="Style guide selection")
    previous_content: Optional[PreviousContentSelection] = Field(None, description="Previous content selection")
    reference_images: Optional[ReferenceImageSelection] = Field(None, description="Reference image selection")
    custom_context: Optional[str] = Field(None, description="Free-form context")


class ContextBundle(BaseModel):
    """Assembled context with its sections and accounting."""

    content: Optional[str] = Field(None, description="Assembled context string")
    style_guides: Optional[str] = Field(None, description="Style guides section body")
    previous_content: Optional[str] = Field(None, description="Previous content section body")
    reference_images: Optional[str] = Field(None, description="Visual references section body")
    custom_context: Optional[str] = Field(None, description="Additional context section body")

    estimated_tokens: int = Field(default=0, ge=0, description="Estimated token count")
    cache_key: Optional[str] = Field(None, description="Cache key")
    built_at: Optional[datetime] = Field(None, description="Build time")
    expires_at: Optional[datetime] = Field(None, description="Cache expiry")
