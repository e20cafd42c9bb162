"""In-memory record model.

A Record belongs to exactly one Collection and holds field values normalised
by field type. The last persisted state is kept as a read-only snapshot so
hooks can diff against it.
"""

from __future__ import annotations

import copy
import secrets
import string
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from recordkit.core.datetimes import normalize_datetime
from recordkit.metadata.models import Collection, FieldDefinition

ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 15


def generate_id() -> str:
    """Generate a random 15 character record id."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


def default_value(field: FieldDefinition) -> Any:
    """Zero value for a field type."""
    if field.is_multi:
        return []
    if field.type == "number":
        return 0
    if field.type == "bool":
        return False
    if field.type == "json":
        return None
    return ""


def normalize_value(field: FieldDefinition, value: Any) -> Any:
    """Normalise a raw value for a field.

    Values that cannot be converted are kept as given so the validator
    can report them.
    """
    if field.type == "number":
        if value is None or value == "":
            return 0
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)):
            return value
        try:
            number = float(str(value).strip())
        except ValueError:
            return value
        return int(number) if number.is_integer() else number

    if field.type == "bool":
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    if field.type == "date":
        if value is None or value == "":
            return ""
        normalized = normalize_datetime(value)
        return normalized or value

    if field.type in ("select", "relation", "file"):
        if value is None or value == "":
            items: list[str] = []
        elif isinstance(value, (list, tuple, set)):
            items = [str(v) for v in value if v is not None and v != ""]
        else:
            items = [str(value)]
        if field.is_multi:
            unique: list[str] = []
            for item in items:
                if item not in unique:
                    unique.append(item)
            return unique
        return items[-1] if items else ""

    if field.type == "json":
        return value

    # text, email
    if value is None:
        return ""
    return str(value)


class Record:
    """A single record of a collection."""

    def __init__(self, collection: Collection, data: Mapping[str, Any] | None = None):
        self.collection = collection
        self._data: dict[str, Any] = {}
        self._original: dict[str, Any] = {}
        self._is_new = True
        if data:
            self.load(data)

    def __repr__(self) -> str:
        return f"Record({self.collection.name!r}, id={self.id!r})"

    @property
    def id(self) -> str:
        return self._data.get("id", "")

    @property
    def is_new(self) -> bool:
        return self._is_new

    def get(self, name: str, default: Any = None) -> Any:
        """Get a field value, falling back to the field's zero value."""
        if name in self._data:
            return self._data[name]
        field = self.collection.get_field(name)
        if field is None:
            return default
        return default_value(field)

    def set(self, name: str, value: Any) -> None:
        """Set a field value.

        Raises:
            KeyError: If the collection has no such field
        """
        field = self.collection.get_field(name)
        if field is None:
            raise KeyError(f"Collection '{self.collection.name}' has no field '{name}'")
        self._data[name] = normalize_value(field, value)

    def load(self, data: Mapping[str, Any], fields: Iterable[str] | None = None) -> None:
        """Set every known field from a mapping, ignoring unknown keys."""
        allowed = set(fields) if fields is not None else None
        for key, value in data.items():
            if allowed is not None and key not in allowed:
                continue
            if self.collection.get_field(key) is not None:
                self.set(key, value)

    def has(self, name: str) -> bool:
        return name in self._data

    def ensure_id(self) -> str:
        if not self.id:
            self._data["id"] = generate_id()
        return self.id

    def mark_persisted(self) -> None:
        """Capture the current state as the last persisted state."""
        self._original = copy.deepcopy(self._data)
        self._is_new = False

    def persistence_state(self) -> tuple[bool, dict[str, Any]]:
        """The (is_new, original) pair, for restoring after a rollback."""
        return self._is_new, copy.deepcopy(self._original)

    def restore_persistence_state(self, state: tuple[bool, dict[str, Any]]) -> None:
        self._is_new, original = state
        self._original = copy.deepcopy(original)

    def original(self) -> Mapping[str, Any]:
        """Read-only snapshot of the last persisted state."""
        return MappingProxyType(copy.deepcopy(self._original))

    def changed_fields(self) -> list[str]:
        """Fields whose value differs from the last persisted state."""
        changed = []
        for f in self.collection.all_fields():
            if f.name not in self._data:
                continue
            if self._is_new or self._original.get(f.name) != self._data[f.name]:
                changed.append(f.name)
        return changed

    def clone(self) -> "Record":
        twin = Record(self.collection)
        twin._data = copy.deepcopy(self._data)
        twin._original = copy.deepcopy(self._original)
        twin._is_new = self._is_new
        return twin

    def to_dict(self) -> dict[str, Any]:
        """All fields, including zero values for unset ones."""
        return {f.name: copy.deepcopy(self.get(f.name)) for f in self.collection.all_fields()}

    def hidden_fields(self) -> set[str]:
        """Fields the schema hides from external consumers."""
        return {f.name for f in self.collection.fields if f.hidden}

    def public_dict(self, hidden: Iterable[str] | None = None) -> dict[str, Any]:
        """Serialisable fields minus the hidden ones (schema-hidden by default)."""
        excluded = self.hidden_fields() if hidden is None else set(hidden)
        data = {k: v for k, v in self.to_dict().items() if k not in excluded}
        data["collectionName"] = self.collection.name
        return data
