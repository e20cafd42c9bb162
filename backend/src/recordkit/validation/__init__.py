"""Core record validation (the Validate phase)."""

from recordkit.validation.validator import EMAIL_PATTERN, RecordValidator, ValidationLookup

__all__ = ["EMAIL_PATTERN", "RecordValidator", "ValidationLookup"]
