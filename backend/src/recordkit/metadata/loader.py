"""Load and resolve collection definitions from YAML files."""

from pathlib import Path
from typing import Any

import yaml

from recordkit.core.types import SUPERUSERS_COLLECTION
from recordkit.metadata.models import Collection, FieldDefinition, RuleSet
from recordkit.metadata.validator import ValidationIssue, validate_document


class CollectionError(Exception):
    """Invalid collection definition.

    Attributes:
        issues: Schema findings behind the error, when there are any
    """

    def __init__(self, message: str, issues: list[ValidationIssue] | None = None):
        super().__init__(message)
        self.issues = issues or []


def superusers_collection() -> Collection:
    """The built-in auth collection whose records bypass every rule."""
    return Collection(name=SUPERUSERS_COLLECTION, type="auth", rules=RuleSet())


class CollectionLoader:
    """Loads collection definitions from ``<path>/collections/*.yaml``.

    Example document:

        collection: posts
        type: base
        fields:
          - name: title
            type: text
            required: true
          - name: author
            type: relation
            collection: users
        rules:
          list: "status = 'published' || @request.auth.id = author"
          view: ""
          create: "@request.auth.id != ''"
          # update / delete omitted -> locked
    """

    def __init__(self, metadata_path: Path | None = None):
        self.metadata_path = metadata_path
        self.collections: dict[str, Collection] = {}

    def load_all(self) -> None:
        """Load all collection documents and validate the resulting schema."""
        self.collections = {SUPERUSERS_COLLECTION: superusers_collection()}

        if self.metadata_path is not None:
            collections_path = self.metadata_path / "collections"
            if collections_path.exists():
                for yaml_file in sorted(collections_path.glob("*.yaml")):
                    with open(yaml_file) as f:
                        data = yaml.safe_load(f)
                    if isinstance(data, dict) and "collection" in data:
                        self._check_document(data, yaml_file.name)
                        self._add(self.resolve_collection(data))

        self.validate()

    def register(self, collection: Collection) -> None:
        """Register a collection programmatically and re-validate the schema."""
        if not self.collections:
            self.collections = {SUPERUSERS_COLLECTION: superusers_collection()}
        self._check_document(collection.to_document(), collection.name)
        self._add(collection)
        self.validate()

    def _check_document(self, data: dict[str, Any], source: str) -> None:
        issues = validate_document(data, source)
        if issues:
            summary = "; ".join(str(issue) for issue in issues)
            raise CollectionError(summary, issues)

    def _add(self, collection: Collection) -> None:
        if collection.name in self.collections:
            raise CollectionError(f"Duplicate collection '{collection.name}'")
        self.collections[collection.name] = collection

    def resolve_collection(self, data: dict[str, Any]) -> Collection:
        """Convert a YAML document into a Collection."""
        collection_type = data.get("type", "base")
        fields = [FieldDefinition.from_dict(f) for f in data.get("fields", [])]
        return Collection(
            name=data["collection"],
            type=collection_type,
            fields=fields,
            rules=RuleSet.from_dict(data.get("rules")),
            view_query=data.get("viewQuery"),
        )

    def validate(self) -> None:
        """Check what a single document cannot: system field clashes,
        duplicate fields and relation targets.

        Raises:
            CollectionError: On the first problem found
        """
        for name, collection in self.collections.items():
            reserved = Collection.reserved_names(collection.type)
            seen: set[str] = set()
            for f in collection.fields:
                if f.name in reserved:
                    raise CollectionError(
                        f"Field '{name}.{f.name}' clashes with a system field"
                    )
                if f.name in seen:
                    raise CollectionError(f"Duplicate field '{name}.{f.name}'")
                seen.add(f.name)
                if f.is_relation and f.collection not in self.collections:
                    raise CollectionError(
                        f"Relation field '{name}.{f.name}' targets unknown "
                        f"collection '{f.collection}'"
                    )

    def get_collection(self, name: str) -> Collection | None:
        """Get a resolved collection by name."""
        return self.collections.get(name)

    def list_collections(self) -> list[str]:
        """List all collection names."""
        return list(self.collections.keys())
