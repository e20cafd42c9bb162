"""Core record validation.

Runs as the final action of the on_record_validate chain and in direct
mode, so hooks can add checks but never remove these:
- required: field must have a non-empty value
- number min/max bounds
- text length bounds and regex pattern
- email format
- date parseability
- select values and max_select
- relation ids must exist in the target collection
- unique email on auth collections
"""

import re
from typing import Any, Protocol

from recordkit.core.datetimes import parse_datetime
from recordkit.core.outcomes import ValidationFailed
from recordkit.core.record import Record
from recordkit.metadata.models import FieldDefinition

# Email: Basic RFC 5322 compliant pattern
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class ValidationLookup(Protocol):
    def find_by_id(self, collection: str, id: str) -> Record | None: ...

    def exists(self, collection: str, field: str, value: Any, exclude_id: str = "") -> bool: ...


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, tuple, set)) and not value:
        return True
    return False


class RecordValidator:
    """Validates a record against its collection schema.

    Usage:
        validator = RecordValidator(lookup=records)
        validator.validate(record)   # raises ValidationFailed
    """

    def __init__(self, lookup: ValidationLookup | None = None):
        self.lookup = lookup

    def validate(self, record: Record) -> None:
        """Validate every field of a record.

        Raises:
            ValidationFailed: With one message per failing field
        """
        errors: dict[str, str] = {}
        collection = record.collection

        if collection.is_view:
            raise ValidationFailed(
                {}, f"View collection '{collection.name}' is read-only."
            )

        for field_def in collection.all_fields():
            if field_def.name in ("id", "created", "updated"):
                continue
            message = self.validate_field(field_def, record.get(field_def.name))
            if message:
                errors[field_def.name] = message

        if collection.is_auth and "email" not in errors and self.lookup is not None:
            email = record.get("email")
            if email and self.lookup.exists(collection.name, "email", email, record.id):
                errors["email"] = "Value must be unique."

        if errors:
            raise ValidationFailed(errors)

    def validate_field(self, field_def: FieldDefinition, value: Any) -> str | None:
        """Return an error message for a field value, or None if valid."""
        if field_def.required and (_is_empty(value) or (field_def.type == "bool" and not value)):
            return "Cannot be blank."
        if _is_empty(value):
            return None

        if field_def.type == "number":
            return self._validate_number(field_def, value)
        if field_def.type in ("text", "email"):
            return self._validate_text(field_def, value)
        if field_def.type == "date":
            if parse_datetime(value) is None:
                return "Must be a valid datetime."
            return None
        if field_def.type == "select":
            return self._validate_select(field_def, value)
        if field_def.type == "relation":
            return self._validate_relation(field_def, value)
        if field_def.type == "file":
            return self._validate_max_select(field_def, value)
        return None

    def _validate_number(self, field_def: FieldDefinition, value: Any) -> str | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "Must be a number."
        if field_def.min is not None and value < field_def.min:
            return f"Must be larger than {field_def.min}."
        if field_def.max is not None and value > field_def.max:
            return f"Must be less than {field_def.max}."
        return None

    def _validate_text(self, field_def: FieldDefinition, value: Any) -> str | None:
        text = str(value)
        if field_def.type == "email" and not EMAIL_PATTERN.match(text):
            return "Must be a valid email address."
        if field_def.min is not None and len(text) < field_def.min:
            return f"Must be at least {int(field_def.min)} character(s)."
        if field_def.max is not None and len(text) > field_def.max:
            return f"Must be no more than {int(field_def.max)} character(s)."
        if field_def.pattern:
            try:
                if not re.search(field_def.pattern, text):
                    return "Invalid value format."
            except re.error:
                return "Invalid value format."
        return None

    def _validate_select(self, field_def: FieldDefinition, value: Any) -> str | None:
        items = value if isinstance(value, list) else [value]
        invalid = [item for item in items if item not in field_def.values]
        if invalid:
            return f"Invalid value(s): {', '.join(str(i) for i in invalid)}."
        return self._validate_max_select(field_def, value)

    def _validate_relation(self, field_def: FieldDefinition, value: Any) -> str | None:
        error = self._validate_max_select(field_def, value)
        if error or self.lookup is None or not field_def.collection:
            return error
        ids = value if isinstance(value, list) else [value]
        missing = [i for i in ids if self.lookup.find_by_id(field_def.collection, i) is None]
        if missing:
            return f"Failed to find all relation records with the provided ids: {', '.join(missing)}."
        return None

    def _validate_max_select(self, field_def: FieldDefinition, value: Any) -> str | None:
        if isinstance(value, list) and len(value) > max(field_def.max_select, 1):
            return f"Select no more than {field_def.max_select}."
        return None
