"""Shared fixtures: a small blog/task schema on an in-memory SQLite database."""

import pytest

from recordkit.core.record import Record
from recordkit.hooks.registry import HookRegistry
from recordkit.metadata.loader import CollectionLoader
from recordkit.metadata.models import Collection, FieldDefinition, RuleSet
from recordkit.persistence.sqlite import SQLiteAdapter
from recordkit.records.service import RecordService
from recordkit.rules.compiler import RuleCompiler
from recordkit.rules.enforcement import RuleEnforcer

POSTS_LIST_RULE = "status = 'published' || @request.auth.id = author"


def build_loader() -> CollectionLoader:
    """users (auth) -> posts, tasks -> other."""
    loader = CollectionLoader()
    loader.register(Collection(
        name="users",
        type="auth",
        fields=[
            FieldDefinition(name="name", type="text"),
            FieldDefinition(name="role", type="select", values=["member", "editor"]),
            FieldDefinition(name="apiKey", type="text", hidden=True),
        ],
        rules=RuleSet(list="", view="", create="", update="id = @request.auth.id"),
    ))
    loader.register(Collection(
        name="posts",
        fields=[
            FieldDefinition(name="title", type="text", required=True, max=200),
            FieldDefinition(name="status", type="select", values=["draft", "published"]),
            FieldDefinition(name="author", type="relation", collection="users"),
            FieldDefinition(
                name="tags", type="select", values=["news", "howto", "release"], max_select=3
            ),
            FieldDefinition(name="views", type="number", min=0),
            FieldDefinition(name="attachments", type="file", max_select=5),
        ],
        rules=RuleSet(
            list=POSTS_LIST_RULE,
            view=POSTS_LIST_RULE,
            create="@request.auth.id != ''",
            update="@request.auth.id = author",
            delete="@request.auth.id = author",
        ),
    ))
    loader.register(Collection(
        name="tasks",
        fields=[
            FieldDefinition(name="title", type="text", required=True),
            FieldDefinition(name="done", type="bool"),
            FieldDefinition(name="reviewed", type="bool"),
            FieldDefinition(name="due", type="date"),
            FieldDefinition(name="owner", type="relation", collection="users"),
            FieldDefinition(
                name="watchers", type="relation", collection="users", max_select=10
            ),
        ],
        rules=RuleSet(
            list="owner = @request.auth.id || watchers ?= @request.auth.id",
            view="owner = @request.auth.id",
            create="@request.auth.id != ''",
            update="owner = @request.auth.id",
            delete="owner = @request.auth.id",
        ),
    ))
    loader.register(Collection(
        name="other",
        fields=[
            FieldDefinition(name="name", type="text"),
            FieldDefinition(name="task", type="relation", collection="tasks"),
            FieldDefinition(name="count", type="number"),
        ],
        rules=RuleSet(list="", view=""),
    ))
    return loader


@pytest.fixture
def loader():
    return build_loader()


@pytest.fixture
def storage():
    adapter = SQLiteAdapter(":memory:")
    adapter.connect()
    yield adapter
    adapter.close()


@pytest.fixture
def hooks():
    return HookRegistry()


@pytest.fixture
def records(loader, storage, hooks):
    service = RecordService(loader, storage, hooks)
    service.initialize_schema()
    return service


@pytest.fixture
def enforcer(loader, records):
    return RuleEnforcer(RuleCompiler(loader), lookup=records)


@pytest.fixture
def make_record(loader):
    """Build an unsaved record: make_record("posts", title="Hello")."""

    def _make(collection: str, **data) -> Record:
        return Record(loader.get_collection(collection), data)

    return _make


@pytest.fixture
def insert(records, make_record):
    """Insert a record straight into storage, bypassing hooks and validation."""

    def _insert(collection: str, **data) -> Record:
        record = make_record(collection, **data)
        record.ensure_id()
        records.storage.insert(record.collection, record.to_dict())
        record.mark_persisted()
        return record

    return _insert
