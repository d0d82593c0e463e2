"""
Error models and exception classes.

This module defines the exception hierarchy raised by the generation
engine, including the classified provider error taxonomy, and the
error payload emitted to progress sinks.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class ProviderErrorType(str, Enum):
    """Classified provider failure kinds."""
    PROVIDER_NOT_CONFIGURED = "provider_not_configured"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    QUOTA_EXCEEDED = "quota_exceeded"
    CONTENT_FILTERED = "content_filtered"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    MODEL_NOT_FOUND = "model_not_found"
    UNKNOWN = "unknown"


class GenerationEngineError(Exception):
    """Base exception for the generation engine."""

    def __init__(self, message: str, error_code: str = None, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(GenerationEngineError):
    """Validation error."""

    def __init__(self, message: str, field: str = None, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(message, "VALIDATION_ERROR", {"field": field, "value": value})


class ConfigurationError(GenerationEngineError):
    """Configuration error."""

    def __init__(self, message: str, config_key: str = None):
        self.config_key = config_key
        super().__init__(
            message,
            "CONFIGURATION_ERROR",
            {"config_key": config_key}
        )


class ProviderError(GenerationEngineError):
    """
    Classified failure of a provider call.

    Subclasses fix the error type and whether a retry can help; the
    provider and model that acted are carried for usage accounting.
    """

    error_type: ProviderErrorType = ProviderErrorType.UNKNOWN
    retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str = None,
        model: str = None,
        original_error: Optional[BaseException] = None,
        retryable: Optional[bool] = None
    ):
        self.provider = provider
        self.model = model
        self.original_error = original_error
        if retryable is not None:
            self.retryable = retryable
        super().__init__(
            message,
            "PROVIDER_ERROR",
            {
                "provider": provider,
                "model": model,
                "error_type": self.error_type.value,
                "retryable": self.retryable
            }
        )


class ProviderNotConfiguredError(ProviderError):
    """Provider is unknown or inactive."""
    error_type = ProviderErrorType.PROVIDER_NOT_CONFIGURED


class RateLimitedError(ProviderError):
    """Vendor rate limit hit."""
    error_type = ProviderErrorType.RATE_LIMIT
    retryable = True

    def __init__(self, message: str, retry_after: int = None, **kwargs):
        self.retry_after = retry_after
        super().__init__(message, **kwargs)


class AuthenticationError(ProviderError):
    """Credential rejected by the vendor."""
    error_type = ProviderErrorType.AUTHENTICATION


class QuotaExceededError(ProviderError):
    """Vendor quota or configured spend limit exhausted."""
    error_type = ProviderErrorType.QUOTA_EXCEEDED


class ContentFilteredError(ProviderError):
    """Request or output blocked by a content filter."""
    error_type = ProviderErrorType.CONTENT_FILTERED


class ProviderTimeoutError(ProviderError):
    """Vendor call timed out."""
    error_type = ProviderErrorType.TIMEOUT
    retryable = True


class ServerError(ProviderError):
    """Vendor-side server failure."""
    error_type = ProviderErrorType.SERVER_ERROR
    retryable = True


class ModelNotFoundError(ProviderError):
    """Requested model does not exist for the vendor."""
    error_type = ProviderErrorType.MODEL_NOT_FOUND


class UnknownProviderError(ProviderError):
    """Unclassified provider failure."""
    error_type = ProviderErrorType.UNKNOWN


PROVIDER_ERROR_CLASSES = {
    ProviderErrorType.PROVIDER_NOT_CONFIGURED: ProviderNotConfiguredError,
    ProviderErrorType.RATE_LIMIT: RateLimitedError,
    ProviderErrorType.AUTHENTICATION: AuthenticationError,
    ProviderErrorType.QUOTA_EXCEEDED: QuotaExceededError,
    ProviderErrorType.CONTENT_FILTERED: ContentFilteredError,
    ProviderErrorType.TIMEOUT: ProviderTimeoutError,
    ProviderErrorType.SERVER_ERROR: ServerError,
    ProviderErrorType.MODEL_NOT_FOUND: ModelNotFoundError,
    ProviderErrorType.UNKNOWN: UnknownProviderError
}


class AllProvidersFailedError(GenerationEngineError):
    """Primary provider and every fallback failed."""

    def __init__(self, task: str, attempts: List[Dict[str, Any]] = None):
        self.task = task
        self.attempts = attempts or []
        super().__init__(
            f"All providers failed for task: {task}",
            "ALL_PROVIDERS_FAILED",
            {"task": task, "attempts": self.attempts}
        )


class StreamingUnsupportedError(GenerationEngineError):
    """Selected provider cannot stream."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"Provider {provider} does not support streaming",
            "STREAMING_UNSUPPORTED",
            {"provider": provider}
        )


class GenerationError(GenerationEngineError):
    """Generation run failed."""

    def __init__(self, message: str, mode: str = None, cause: Optional[BaseException] = None):
        self.mode = mode
        self.cause = cause
        super().__init__(
            message,
            "GENERATION_ERROR",
            {"mode": mode}
        )


class NodeNotFoundError(GenerationEngineError):
    """Generation node does not exist."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}", "NODE_NOT_FOUND", {"node_id": node_id})


class TreeCycleError(GenerationEngineError):
    """Move would make a node its own ancestor."""

    def __init__(self, node_id: str, new_parent_id: str):
        self.node_id = node_id
        self.new_parent_id = new_parent_id
        super().__init__(
            "Cannot move node to its own descendant",
            "TREE_CYCLE",
            {"node_id": node_id, "new_parent_id": new_parent_id}
        )


class TreeStoreError(GenerationEngineError):
    """Repository failure inside a tree operation."""

    def __init__(self, message: str, operation: str = None):
        self.operation = operation
        super().__init__(message, "TREE_STORE_ERROR", {"operation": operation})


class ErrorResponse(BaseModel):
    """Error payload carried by the terminal error event."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Error code")

    # Optional Details
    details: Optional[Dict[str, Any]] = Field(None, description="Error details")
    error_type: Optional[str] = Field(None, description="Classified provider error type")
    retryable: Optional[bool] = Field(None, description="Whether retrying may succeed")

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Error timestamp"
    )

    @classmethod
    def from_exception(cls, exc: BaseException) -> 'ErrorResponse':
        """Create error response from exception."""
        if isinstance(exc, GenerationEngineError):
            return cls(
                error=exc.__class__.__name__,
                message=exc.message,
                error_code=exc.error_code or "UNKNOWN_ERROR",
                details=exc.details,
                error_type=exc.details.get("error_type"),
                retryable=exc.details.get("retryable")
            )

        return cls(
            error=exc.__class__.__name__,
            message=str(exc),
            error_code="UNKNOWN_ERROR"
        )
