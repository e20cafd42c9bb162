"""Collection schema: models and the YAML loader."""

from recordkit.metadata.loader import CollectionError, CollectionLoader, superusers_collection
from recordkit.metadata.models import RULE_ACTIONS, Collection, FieldDefinition, RuleSet

__all__ = [
    "Collection",
    "CollectionError",
    "CollectionLoader",
    "FieldDefinition",
    "RULE_ACTIONS",
    "RuleSet",
    "superusers_collection",
]
