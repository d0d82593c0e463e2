"""
Provider configuration models.

This module defines the persisted provider settings and the
result of selecting a provider for a task.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class ProviderName(str, Enum):
    """Known provider identifiers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    PERPLEXITY = "perplexity"


class ModelComplexity(str, Enum):
    """Complexity hint used to bias model choice."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskDefault(BaseModel):
    """Provider and model to use for a task."""

    provider: str = Field(..., description="Provider identifier")
    model: Optional[str] = Field(None, description="Model identifier")


class ProviderConfig(BaseModel):
    """Persisted provider settings."""

    provider: str = Field(..., description="Provider identifier")
    api_key_encrypted: Optional[str] = Field(None, description="Encrypted credential")
    default_model: Optional[str] = Field(None, description="Default model")
    models: List[str] = Field(default_factory=list, description="Available models")
    fallback_models: List[str] = Field(default_factory=list, description="Ordered fallback models")
    task_defaults: Dict[str, TaskDefault] = Field(default_factory=dict, description="Per-task overrides")

    # Spend limits
    daily_limit: Optional[float] = Field(None, ge=0.0, description="Daily spend limit")
    monthly_limit: Optional[float] = Field(None, ge=0.0, description="Monthly spend limit")
    current_usage: float = Field(default=0.0, ge=0.0, description="Running spend counter")

    # Status
    active: bool = Field(default=True, description="Whether the provider may be used")
    last_tested: Optional[datetime] = Field(None, description="Last connection test")
    test_success: Optional[bool] = Field(None, description="Result of last connection test")
    last_health_check: Optional[datetime] = Field(None, description="Last health check")

    class Config:
        use_enum_values = True


class ProviderSelection(BaseModel):
    """Client chosen to serve a request."""

    provider: str = Field(..., description="Provider that will act")
    model: Optional[str] = Field(None, description="Model that will act")
    client: Any = Field(..., description="Provider client")
    fallback: bool = Field(default=False, description="Whether a fallback was chosen")
    original_provider: Optional[str] = Field(None, description="Primary provider when falling back")

    class Config:
        arbitrary_types_allowed = True
