"""Core types shared across recordkit."""

from recordkit.core.outcomes import (
    NOT_FOUND_MESSAGE,
    ApiError,
    HookAbortedError,
    InvalidRuleError,
    Outcome,
    OutcomeKind,
    RecordKitError,
    StorageFailure,
    ValidationFailed,
)
from recordkit.core.record import Record, generate_id
from recordkit.core.request import RequestContextTag, RequestInfo

__all__ = [
    "ApiError",
    "HookAbortedError",
    "InvalidRuleError",
    "NOT_FOUND_MESSAGE",
    "Outcome",
    "OutcomeKind",
    "Record",
    "RecordKitError",
    "RequestContextTag",
    "RequestInfo",
    "StorageFailure",
    "ValidationFailed",
    "generate_id",
]
