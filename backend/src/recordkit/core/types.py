"""Field type registry with storage defaults and rule capabilities."""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldType:
    name: str
    storage_type: str
    multi_capable: bool = False
    comparable: bool = True


# Built-in field types
FIELD_TYPES: dict[str, FieldType] = {
    "text": FieldType(name="text", storage_type="TEXT"),
    "email": FieldType(name="email", storage_type="TEXT"),
    "number": FieldType(name="number", storage_type="NUMERIC"),
    "bool": FieldType(name="bool", storage_type="INTEGER"),  # 0/1
    "date": FieldType(name="date", storage_type="TEXT"),  # "2024-01-31 10:00:00.000Z"
    "select": FieldType(name="select", storage_type="TEXT", multi_capable=True),
    "relation": FieldType(name="relation", storage_type="TEXT", multi_capable=True),
    "file": FieldType(name="file", storage_type="TEXT", multi_capable=True),
    "json": FieldType(name="json", storage_type="TEXT", comparable=False),
}

# Fields every collection carries, in column order
SYSTEM_FIELDS = ("id", "created", "updated")

# Extra system fields on auth-capable collections
AUTH_SYSTEM_FIELDS = ("email", "verified")

SUPERUSERS_COLLECTION = "_superusers"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_field_type(type_name: str) -> FieldType:
    """Get a field type definition.

    Raises:
        ValueError: If the type is not registered
    """
    if type_name not in FIELD_TYPES:
        raise ValueError(
            f"Unknown field type '{type_name}'. "
            f"Expected one of: {', '.join(sorted(FIELD_TYPES))}"
        )
    return FIELD_TYPES[type_name]


def get_storage_type(type_name: str) -> str:
    """Get SQLite storage type for a field type."""
    return get_field_type(type_name).storage_type
