"""
Usage accounting models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class UsageWindow(str, Enum):
    """Aggregation windows for provider spend."""
    DAY = "day"
    MONTH = "month"


class UsageLogEntry(BaseModel):
    """One provider call, successful or not."""

    provider: str = Field(..., description="Provider that acted")
    model: Optional[str] = Field(None, description="Model that acted")
    task: Optional[str] = Field(None, description="Task identifier")

    tokens_input: int = Field(default=0, ge=0, description="Input tokens")
    tokens_output: int = Field(default=0, ge=0, description="Output tokens")
    tokens_total: int = Field(default=0, ge=0, description="Total tokens")
    cost: float = Field(default=0.0, ge=0.0, description="Cost")
    latency_ms: int = Field(default=0, ge=0, description="Latency in milliseconds")

    success: bool = Field(..., description="Whether the call succeeded")
    error: Optional[str] = Field(None, description="Error message on failure")

    vertical: Optional[str] = Field(None, description="Target vertical")
    mode: Optional[str] = Field(None, description="Generation mode")
    streaming: bool = Field(default=False, description="Whether the call streamed")

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Time of the call"
    )
