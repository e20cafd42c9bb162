"""Outcome taxonomy for rule decisions, hook chains and storage.

Exceptions are raised inside hook chains and storage calls. Orchestrators
convert them into an Outcome at their boundary so callers can match on
``outcome.kind`` instead of inspecting exception classes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

NOT_FOUND_MESSAGE = "The requested resource wasn't found."


class OutcomeKind(Enum):
    OK = "ok"
    INVALID_RULE = "invalid_rule"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INPUT_REJECTED = "input_rejected"
    HOOK_ABORTED = "hook_aborted"
    STORAGE_FAILURE = "storage_failure"


STATUS_CODES: dict[OutcomeKind, int] = {
    OutcomeKind.OK: 200,
    OutcomeKind.INVALID_RULE: 400,
    OutcomeKind.FORBIDDEN: 403,
    OutcomeKind.NOT_FOUND: 404,
    OutcomeKind.INPUT_REJECTED: 400,
    OutcomeKind.HOOK_ABORTED: 400,
    OutcomeKind.STORAGE_FAILURE: 500,
}


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class RecordKitError(Exception):
    """Base class for errors that map onto an outcome."""

    kind = OutcomeKind.HOOK_ABORTED

    def __init__(self, message: str, data: dict[str, Any] | None = None):
        self.message = message
        self.data = data or {}
        super().__init__(message)


class InvalidRuleError(RecordKitError):
    """Malformed or unsupported filter expression."""

    kind = OutcomeKind.INVALID_RULE


class ValidationFailed(RecordKitError):
    """Core validation rejected a record.

    Attributes:
        errors: Field name -> message
    """

    kind = OutcomeKind.INPUT_REJECTED

    def __init__(self, errors: dict[str, str], message: str = "Failed to validate the record."):
        self.errors = dict(errors)
        super().__init__(message, {name: {"message": msg} for name, msg in self.errors.items()})


class HookAbortedError(RecordKitError):
    """A hook handler raised instead of continuing the chain."""

    kind = OutcomeKind.HOOK_ABORTED


class StorageFailure(RecordKitError):
    """The persistence layer failed to complete a read or write."""

    kind = OutcomeKind.STORAGE_FAILURE


class ApiError(HookAbortedError):
    """A handler-chosen response status.

    Example:
        async def only_drafts(e):
            if e.record.get("status") != "draft":
                raise ApiError(403, "Only drafts can be edited.")
            await e.next()
    """

    def __init__(self, status: int, message: str, data: dict[str, Any] | None = None):
        self.status = status
        super().__init__(message, data)


# -----------------------------------------------------------------------------
# Outcome
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Outcome:
    """Result of an orchestrated operation.

    Attributes:
        kind: Category from the error taxonomy (OK on success)
        message: Human-readable message (empty on success)
        data: Structured error details (e.g. per-field validation messages)
        value: Payload on success
        status: Explicit status override (ApiError)
    """

    kind: OutcomeKind
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    value: Any = None
    status: int | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    @property
    def status_code(self) -> int:
        if self.status is not None:
            return self.status
        return STATUS_CODES[self.kind]

    def to_error_dict(self) -> dict[str, Any]:
        return {"status": self.status_code, "message": self.message, "data": self.data}

    @classmethod
    def success(cls, value: Any = None, status: int | None = None) -> "Outcome":
        return cls(OutcomeKind.OK, value=value, status=status)

    @classmethod
    def forbidden(cls, message: str = "Only superusers can perform this action.") -> "Outcome":
        return cls(OutcomeKind.FORBIDDEN, message)

    @classmethod
    def not_found(cls) -> "Outcome":
        return cls(OutcomeKind.NOT_FOUND, NOT_FOUND_MESSAGE)

    @classmethod
    def input_rejected(
        cls, message: str = "Failed to create record.", data: dict[str, Any] | None = None
    ) -> "Outcome":
        return cls(OutcomeKind.INPUT_REJECTED, message, data or {})

    @classmethod
    def invalid_rule(cls, message: str) -> "Outcome":
        return cls(OutcomeKind.INVALID_RULE, message)

    @classmethod
    def from_exception(cls, error: BaseException) -> "Outcome":
        """Map an exception raised inside a chain onto an outcome."""
        if isinstance(error, ApiError):
            return cls(error.kind, error.message, error.data, status=error.status)
        if isinstance(error, RecordKitError):
            return cls(error.kind, error.message, error.data)
        return cls(OutcomeKind.HOOK_ABORTED, str(error) or type(error).__name__)
