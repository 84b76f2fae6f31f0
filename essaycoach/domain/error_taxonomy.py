from __future__ import annotations

from typing import Literal

from essaycoach.domain.errors import (
    DomainInvariantError,
    DomainValidationError,
    FeedbackTaskMissingError,
    ResponseParseError,
    VendorCallError,
)
from essaycoach.domain.models import TaskType

# Canonical error vocabulary persisted on failed feedback rows and prompt logs.
ErrorCode = Literal[
    "validation_error",
    "vendor_unavailable",
    "vendor_auth_missing",
    "response_parse_failed",
    "feedback_task_failed",
    "persistence_failed",
    "internal_error",
]

FailureClassification = Literal["fatal", "degraded"]

CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "validation_error",
    "vendor_unavailable",
    "vendor_auth_missing",
    "response_parse_failed",
    "feedback_task_failed",
    "persistence_failed",
    "internal_error",
)

# Only the feedback task carries the scores; losing anything else degrades the result.
FATAL_TASK_TYPES: frozenset[TaskType] = frozenset({TaskType.FEEDBACK})


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def classify_task_failure(task_type: TaskType) -> FailureClassification:
    if task_type in FATAL_TASK_TYPES:
        return "fatal"
    return "degraded"


def resolve_error_code(exc: BaseException) -> ErrorCode:
    if isinstance(exc, VendorCallError):
        code = exc.code
        if is_canonical_error_code(code):
            return code  # type: ignore[return-value]
        return "vendor_unavailable"
    if isinstance(exc, ResponseParseError):
        return "response_parse_failed"
    if isinstance(exc, FeedbackTaskMissingError):
        return "feedback_task_failed"
    if isinstance(exc, (DomainValidationError, DomainInvariantError)):
        return "validation_error"
    return "internal_error"
