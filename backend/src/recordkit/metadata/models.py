"""Collection schema models."""

from dataclasses import dataclass, field
from typing import Any

from recordkit.core.types import (
    AUTH_SYSTEM_FIELDS,
    SUPERUSERS_COLLECTION,
    SYSTEM_FIELDS,
    get_field_type,
)

RULE_ACTIONS = ("list", "view", "create", "update", "delete")


@dataclass
class FieldDefinition:
    name: str
    type: str
    required: bool = False
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    values: list[str] = field(default_factory=list)  # select options
    max_select: int = 1
    collection: str | None = None  # relation target
    hidden: bool = False
    system: bool = False

    @property
    def is_multi(self) -> bool:
        """True if the field holds a set of values."""
        return get_field_type(self.type).multi_capable and self.max_select > 1

    @property
    def is_file(self) -> bool:
        return self.type == "file"

    @property
    def is_relation(self) -> bool:
        return self.type == "relation"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldDefinition":
        """Create FieldDefinition from a YAML dict."""
        return cls(
            name=data["name"],
            type=data.get("type", "text"),
            required=bool(data.get("required", False)),
            min=data.get("min"),
            max=data.get("max"),
            pattern=data.get("pattern"),
            values=list(data.get("values", [])),
            max_select=int(data.get("maxSelect", 1)),
            collection=data.get("collection"),
            hidden=bool(data.get("hidden", False)),
        )

    def to_document(self) -> dict[str, Any]:
        """The YAML document form of this field."""
        doc: dict[str, Any] = {"name": self.name, "type": self.type}
        if self.required:
            doc["required"] = True
        if self.hidden:
            doc["hidden"] = True
        for key in ("min", "max", "pattern", "collection"):
            if getattr(self, key) is not None:
                doc[key] = getattr(self, key)
        if self.values:
            doc["values"] = list(self.values)
        if self.max_select != 1:
            doc["maxSelect"] = self.max_select
        return doc


@dataclass
class RuleSet:
    """Access rules for the five record actions.

    Each rule is one of:
    - None: locked, only superusers pass
    - "": open, anyone passes
    - expression text: conditional pass and row filter
    """

    list: str | None = None
    view: str | None = None
    create: str | None = None
    update: str | None = None
    delete: str | None = None

    def get(self, action: str) -> str | None:
        if action not in RULE_ACTIONS:
            raise ValueError(f"Unknown rule action '{action}'")
        return getattr(self, action)

    def is_locked(self, action: str) -> bool:
        return self.get(action) is None

    def is_open(self, action: str) -> bool:
        rule = self.get(action)
        return rule is not None and rule.strip() == ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RuleSet":
        data = data or {}
        values: dict[str, str | None] = {}
        for action in RULE_ACTIONS:
            raw = data.get(action)
            values[action] = None if raw is None else str(raw)
        return cls(**values)


@dataclass
class Collection:
    name: str
    fields: list[FieldDefinition] = field(default_factory=list)
    type: str = "base"  # "base" | "auth" | "view"
    rules: RuleSet = field(default_factory=RuleSet)
    view_query: str | None = None

    def __post_init__(self) -> None:
        self._by_name = {f.name: f for f in self.all_fields()}

    @property
    def is_auth(self) -> bool:
        return self.type == "auth"

    @property
    def is_view(self) -> bool:
        return self.type == "view"

    @property
    def is_superusers(self) -> bool:
        return self.name == SUPERUSERS_COLLECTION

    def system_fields(self) -> list[FieldDefinition]:
        system = [
            FieldDefinition(name="id", type="text", system=True),
            FieldDefinition(name="created", type="date", system=True),
            FieldDefinition(name="updated", type="date", system=True),
        ]
        if self.is_auth:
            system.append(FieldDefinition(name="email", type="email", required=True, system=True))
            system.append(FieldDefinition(name="verified", type="bool", system=True))
        return system

    def all_fields(self) -> list[FieldDefinition]:
        """System fields followed by the declared fields."""
        return self.system_fields() + list(self.fields)

    def get_field(self, name: str) -> FieldDefinition | None:
        return self._by_name.get(name)

    def field_names(self) -> list[str]:
        return [f.name for f in self.all_fields()]

    def to_document(self) -> dict[str, Any]:
        """The YAML document form of this collection."""
        doc: dict[str, Any] = {
            "collection": self.name,
            "type": self.type,
            "fields": [f.to_document() for f in self.fields],
            "rules": {action: self.rules.get(action) for action in RULE_ACTIONS},
        }
        if self.view_query is not None:
            doc["viewQuery"] = self.view_query
        return doc

    @staticmethod
    def reserved_names(collection_type: str) -> tuple[str, ...]:
        if collection_type == "auth":
            return SYSTEM_FIELDS + AUTH_SYSTEM_FIELDS
        return SYSTEM_FIELDS
