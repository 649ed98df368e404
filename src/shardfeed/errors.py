"""
Structured error types for the feed cache.

Every error carries a category, a retryable flag, structured context and
an optional chained cause, so the scheduler can decide on retries and the
logs keep enough detail for root cause analysis.

Hierarchy::

    FeedError
    ├── ValidationError       (VALIDATION, fatal)
    │   ├── SiteNotFoundError
    │   └── ShardIndexError
    ├── ItemError             (ITEM, recovered locally)
    ├── PipelineError         (PIPELINE)
    │   └── RenderError
    ├── StoreError            (STORAGE)
    │   └── StoreUnavailableError  (retryable)
    └── StaleWriteError       (CONCURRENCY)

Usage:
    from shardfeed.errors import ShardIndexError

    if not 0 <= shard_index < shard_count:
        raise ShardIndexError(shard_index, shard_count).with_context(site_id=site_id)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"
    ITEM = "ITEM"
    PIPELINE = "PIPELINE"
    STORAGE = "STORAGE"
    CONCURRENCY = "CONCURRENCY"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error."""

    site_id: int | None = None
    shard_index: int | None = None
    entity_id: int | None = None
    task: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["site_id", "shard_index", "entity_id", "task"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FeedError(Exception):
    """
    Base exception for all feed cache errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    callers rarely need to pass them explicitly.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FeedError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SiteNotFoundError(7).with_context(task="generate_feed")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS (fatal, never retried)
# =============================================================================


class ValidationError(FeedError):
    """Invalid input; the task aborts before writing anything."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class SiteNotFoundError(ValidationError):
    """The requested site does not exist."""

    def __init__(self, site_id: int, **kwargs: Any):
        super().__init__(f"Site with ID {site_id} not found", **kwargs)
        self.context.site_id = site_id


class ShardIndexError(ValidationError):
    """Shard index outside ``[0, shard_count)``."""

    def __init__(self, shard_index: int, shard_count: int, **kwargs: Any):
        super().__init__(
            f"Invalid shard index: {shard_index} (shard count {shard_count})",
            **kwargs,
        )
        self.context.shard_index = shard_index
        self.context.metadata["shard_count"] = shard_count


# =============================================================================
# ITEM / PIPELINE ERRORS
# =============================================================================


class ItemError(FeedError):
    """A single catalog entity could not be normalized."""

    default_category = ErrorCategory.ITEM
    default_retryable = False


class PipelineError(FeedError):
    """Failure while distributing or assembling a generated feed."""

    default_category = ErrorCategory.PIPELINE
    default_retryable = False


class RenderError(PipelineError):
    """The renderer failed to produce a document."""


# =============================================================================
# STORAGE / CONCURRENCY ERRORS
# =============================================================================


class StoreError(FeedError):
    """Backing key/value store failure."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class StoreUnavailableError(StoreError):
    """Backing key/value store cannot be reached."""

    default_retryable = True


class StaleWriteError(FeedError):
    """A write computed under an older generation token was rejected."""

    default_category = ErrorCategory.CONCURRENCY
    default_retryable = False

    def __init__(self, token: int, current: int, **kwargs: Any):
        super().__init__(
            f"Stale write rejected: token {token} is older than current {current}",
            **kwargs,
        )
        self.token = token
        self.current = current


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FeedError",
    "ValidationError",
    "SiteNotFoundError",
    "ShardIndexError",
    "ItemError",
    "PipelineError",
    "RenderError",
    "StoreError",
    "StoreUnavailableError",
    "StaleWriteError",
]
