"""
Data models and schemas for the generation engine.

This module contains the data models, validation schemas and
exception types used throughout the system.
"""

from .provider import (
    ProviderName,
    ModelComplexity,
    TaskDefault,
    ProviderConfig,
    ProviderSelection
)

from .generation import (
    GenerationMode,
    VerticalMode,
    FinishReason,
    GenerationRequest,
    GenerationUsage,
    GenerationMetadata,
    GenerationResponse,
    GenerationConfig
)

from .tree import (
    NodeType,
    GenerationNode
)

from .usage import (
    UsageWindow,
    UsageLogEntry
)

from .context import (
    PreviousContentMode,
    StyleGuideSelection,
    IncludeElements,
    PreviousContentSelection,
    ReferenceImageSelection,
    ContextConfig,
    ContextBundle
)

from .events import (
    EventType,
    ProgressEvent
)

from .errors import (
    ProviderErrorType,
    GenerationEngineError,
    ValidationError,
    ConfigurationError,
    ProviderError,
    ProviderNotConfiguredError,
    RateLimitedError,
    AuthenticationError,
    QuotaExceededError,
    ContentFilteredError,
    ProviderTimeoutError,
    ServerError,
    ModelNotFoundError,
    UnknownProviderError,
    AllProvidersFailedError,
    StreamingUnsupportedError,
    GenerationError,
    NodeNotFoundError,
    TreeCycleError,
    TreeStoreError,
    ErrorResponse
)

__all__ = [
    # Provider models
    'ProviderName',
    'ModelComplexity',
    'TaskDefault',
    'ProviderConfig',
    'ProviderSelection',

    # Generation models
    'GenerationMode',
    'VerticalMode',
    'FinishReason',
    'GenerationRequest',
    'GenerationUsage',
    'GenerationMetadata',
    'GenerationResponse',
    'GenerationConfig',

    # Tree models
    'NodeType',
    'GenerationNode',

    # Usage models
    'UsageWindow',
    'UsageLogEntry',

    # Context models
    'PreviousContentMode',
    'StyleGuideSelection',
    'IncludeElements',
    'PreviousContentSelection',
    'ReferenceImageSelection',
    'ContextConfig',
    'ContextBundle',

    # Event models
    'EventType',
    'ProgressEvent',

    # Error models
    'ProviderErrorType',
    'GenerationEngineError',
    'ValidationError',
    'ConfigurationError',
    'ProviderError',
    'ProviderNotConfiguredError',
    'RateLimitedError',
    'AuthenticationError',
    'QuotaExceededError',
    'ContentFilteredError',
    'ProviderTimeoutError',
    'ServerError',
    'ModelNotFoundError',
    'UnknownProviderError',
    'AllProvidersFailedError',
    'StreamingUnsupportedError',
    'GenerationError',
    'NodeNotFoundError',
    'TreeCycleError',
    'TreeStoreError',
    'ErrorResponse'
]
