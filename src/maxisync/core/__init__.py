"""Core primitives: settings, logging, errors, enums, circuit breaker, retry."""

from maxisync.core.enums import CacheAction, ConnectionState, EntityKind, QueuePolicy
from maxisync.core.errors import (
    ApiError,
    InvalidArgumentError,
    MaxiSyncError,
    ValidationError,
)

__all__ = [
    "CacheAction",
    "ConnectionState",
    "EntityKind",
    "QueuePolicy",
    "ApiError",
    "InvalidArgumentError",
    "MaxiSyncError",
    "ValidationError",
]
