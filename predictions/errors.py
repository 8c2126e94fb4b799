"""
Error States and Results

Every failure the dispatch engine can produce is enumerated here.
Errors are data, not exceptions: they travel inside a Result and can be
logged, serialized and mapped to transport responses without inspecting
free-text messages.

BOUNDARY ENFORCEMENT:
=====================
- Services return Result, never raise across their public surface
- Transformers raise FeaturesTransformerError / LabelsTransformerError
  internally; the backend adapter converts them to Error values
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generic, Optional, Tuple, TypeVar
from enum import Enum


T = TypeVar("T")


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCode(Enum):
    """Stable, distinguishable failure kinds."""
    # Dispatch errors
    FEATURES_VALIDATION_FAILED = "features_validation_failed"
    INVALID_ARGUMENT = "invalid_argument"
    NO_ALGORITHM_AVAILABLE = "no_algorithm_available"
    FEATURES_TRANSFORMER_ERROR = "features_transformer_error"
    LABELS_TRANSFORMER_ERROR = "labels_transformer_error"
    BACKEND_ERROR = "backend_error"
    LABELS_VALIDATION_FAILED = "labels_validation_failed"
    PERSISTENCE_ERROR = "persistence_error"

    # Project management errors
    PROJECT_DOES_NOT_EXIST = "project_does_not_exist"
    INVALID_PROJECT_IDENTIFIER = "invalid_project_identifier"
    FEATURES_CONFIGURATION_ERROR = "features_configuration_error"
    PROJECT_ALREADY_EXISTS = "project_already_exists"
    ALGORITHM_ALREADY_EXISTS = "algorithm_already_exists"
    ALGORITHM_PROJECT_MISMATCH = "algorithm_project_mismatch"


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    """
    code: ErrorCode
    message: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(code: ErrorCode, message: str, **context: str) -> Error:
        return Error(
            code=code,
            message=message,
            context=tuple(sorted((k, str(v)) for k, v in context.items()))
        )

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            occurred_at=self.occurred_at,
            context=self.context + ((key, value),)
        )

    def context_value(self, key: str) -> Optional[str]:
        for k, v in self.context:
            if k == key:
                return v
        return None


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Either contains a value OR an error, never both.
    """
    value: Optional[T] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: T) -> Result[T]:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result[T]:
        return Result(value=None, error=error)

    @staticmethod
    def fail(code: ErrorCode, message: str, **context: str) -> Result[T]:
        return Result(value=None, error=Error.create(code, message, **context))


# =============================================================================
# TRANSFORMER EXCEPTIONS (internal to the backend adapter)
# =============================================================================

class TransformerError(Exception):
    """Base class for feature/label conversion failures."""


class FeaturesTransformerError(TransformerError):
    """Features could not be converted to a backend's wire format."""


class LabelsTransformerError(TransformerError):
    """A backend's wire labels could not be converted to project labels."""
