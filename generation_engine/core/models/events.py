"""
Progress event models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any
from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Progress event types."""
    GENERATION_START = "generation_start"
    OUTPUT_START = "output_start"
    OUTPUT_COMPLETE = "output_complete"
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    VERTICAL_START = "vertical_start"
    VERTICAL_COMPLETE = "vertical_complete"
    BATCH_ITEM_START = "batch_item_start"
    BATCH_ITEM_COMPLETE = "batch_item_complete"
    CONTENT = "content"
    COMPLETION = "completion"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """Event pushed to a progress sink."""

    type: EventType = Field(..., description="Event type")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Emission time"
    )
    data: Dict[str, Any] = Field(default_factory=dict, description="Event payload")

    class Config:
        use_enum_values = True

    def to_payload(self) -> Dict[str, Any]:
        """Flatten into a JSON-ready dict."""
        return {
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            **self.data
        }
