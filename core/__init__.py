"""
learnflow - Core Module

Foundational pieces shared by both services:
- Unified error taxonomy
- Type definitions and the UNSET sentinel for partial updates
- Retry policy used on stream version races

The composition root lives in core.bootstrap and is imported explicitly,
since it depends on every other package.

Usage:
    from core import ValidationError, NotFoundError, UNSET, RetryPolicy
"""

from core.errors import (
    AggregateDeletedError,
    ConcurrencyError,
    ConfigError,
    ErrorContext,
    ErrorSeverity,
    EventStoreError,
    LearnflowError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from core.resilience import RetryConfig, RetryPolicy
from core.types import UNSET, LmsQueryClient, Maybe, from_optional, is_set

__all__ = [
    # Errors
    "LearnflowError",
    "ErrorContext",
    "ErrorSeverity",
    "ConfigError",
    "ValidationError",
    "NotFoundError",
    "AggregateDeletedError",
    "EventStoreError",
    "ConcurrencyError",
    "UpstreamUnavailableError",
    # Resilience
    "RetryConfig",
    "RetryPolicy",
    # Types
    "UNSET",
    "Maybe",
    "is_set",
    "from_optional",
    "LmsQueryClient",
]
