"""JSON Schema validation for collection documents.

Every collection document, whether read from YAML or registered in code, is
checked against ``schemas/collection.schema.json`` before it is resolved.
Checks that need the whole schema (relation targets, system field clashes)
live in CollectionLoader.validate.

Usage:
    issues = validate_document(doc, source=Path("collections/posts.yaml"))
    for issue in issues:
        print(issue)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

_SCHEMA_PATH = Path(__file__).parent / "schemas" / "collection.schema.json"


@dataclass
class ValidationIssue:
    """A single schema finding for a collection document."""

    source: str
    message: str
    path: str = ""  # location within the document, e.g. "fields[0]/type"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"{self.source}{loc}: {self.message}"


@lru_cache(maxsize=1)
def load_schema() -> dict[str, Any]:
    with _SCHEMA_PATH.open() as fh:
        return json.load(fh)


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema = load_schema()
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def _json_path(error: ValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def validate_document(doc: Any, source: str | Path = "<collection>") -> list[ValidationIssue]:
    """Validate one collection document.

    Returns:
        Issues sorted by document path; empty when the document is valid
    """
    errors = sorted(_validator().iter_errors(doc), key=lambda e: list(map(str, e.path)))
    return [
        ValidationIssue(source=str(source), message=error.message, path=_json_path(error))
        for error in errors
    ]
