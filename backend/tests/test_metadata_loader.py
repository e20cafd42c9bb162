"""Tests for loading collection definitions from YAML."""

import textwrap

import pytest

from recordkit.core.types import FIELD_TYPES, SUPERUSERS_COLLECTION
from recordkit.metadata import Collection, CollectionError, CollectionLoader, FieldDefinition
from recordkit.metadata.validator import load_schema, validate_document


def write_collection(root, filename, body):
    collections = root / "collections"
    collections.mkdir(exist_ok=True)
    (collections / filename).write_text(textwrap.dedent(body))


@pytest.fixture
def metadata(tmp_path):
    write_collection(tmp_path, "users.yaml", """
        collection: users
        type: auth
        fields:
          - name: name
            type: text
        rules:
          view: ""
    """)
    write_collection(tmp_path, "posts.yaml", """
        collection: posts
        fields:
          - name: title
            type: text
            required: true
            max: 200
          - name: tags
            type: select
            values: [news, howto]
            maxSelect: 2
          - name: author
            type: relation
            collection: users
        rules:
          list: "status = 'published'"
          view: ""
    """)
    return tmp_path


class TestCollectionLoader:
    def test_loads_collections_and_superusers(self, metadata):
        loader = CollectionLoader(metadata)
        loader.load_all()

        assert set(loader.list_collections()) == {SUPERUSERS_COLLECTION, "users", "posts"}
        assert loader.get_collection(SUPERUSERS_COLLECTION).is_superusers

    def test_fields_and_system_fields(self, metadata):
        loader = CollectionLoader(metadata)
        loader.load_all()
        posts = loader.get_collection("posts")
        users = loader.get_collection("users")

        assert posts.field_names()[:3] == ["id", "created", "updated"]
        assert posts.get_field("title").max == 200
        assert posts.get_field("tags").is_multi
        assert users.get_field("email").required

    def test_missing_rules_are_locked(self, metadata):
        loader = CollectionLoader(metadata)
        loader.load_all()
        rules = loader.get_collection("posts").rules

        assert rules.list == "status = 'published'"
        assert rules.view == ""
        assert rules.create is None

    def test_missing_directory_yields_only_superusers(self, tmp_path):
        loader = CollectionLoader(tmp_path / "nowhere")
        loader.load_all()

        assert loader.list_collections() == [SUPERUSERS_COLLECTION]

    def test_files_without_collection_key_are_skipped(self, metadata):
        write_collection(metadata, "notes.yaml", "description: not a collection\n")
        loader = CollectionLoader(metadata)
        loader.load_all()

        assert "notes" not in loader.list_collections()


class TestSchemaErrors:
    @pytest.mark.parametrize("body,message", [
        ("""
            collection: things
            fields:
              - name: owner
                type: relation
                collection: ghosts
        """, "unknown collection 'ghosts'"),
        ("""
            collection: things
            fields:
              - name: size
                type: decimal
        """, "'decimal' is not one of"),
        ("""
            collection: things
            fields:
              - name: id
                type: text
        """, "clashes with a system field"),
        ("""
            collection: things
            fields:
              - name: a
                type: text
              - name: a
                type: text
        """, "Duplicate field"),
        ("""
            collection: things
            fields:
              - name: kind
                type: select
        """, "'values' is a required property"),
        ("""
            collection: things
            type: view
        """, "'viewQuery' is a required property"),
        ("""
            collection: things
            type: table
        """, "'table' is not one of"),
        ("""
            collection: things
            fields:
              - name: owner
                type: relation
        """, "'collection' is a required property"),
        ("""
            collection: things
            fields:
              - name: size
                type: number
                maxSelect: 0
        """, r"fields\[0\]/maxSelect"),
        ("""
            collection: bad-name
        """, "'bad-name' does not match"),
    ])
    def test_invalid_definitions(self, metadata, body, message):
        write_collection(metadata, "things.yaml", body)
        loader = CollectionLoader(metadata)

        with pytest.raises(CollectionError, match=message):
            loader.load_all()

    def test_unknown_rule_action(self, metadata):
        write_collection(metadata, "things.yaml", """
            collection: things
            rules:
              purge: ""
        """)

        with pytest.raises(CollectionError, match="things.yaml at rules") as exc:
            CollectionLoader(metadata).load_all()
        assert "'purge' was unexpected" in str(exc.value)
        assert exc.value.issues[0].path == "rules"

    def test_duplicate_collection(self, metadata):
        write_collection(metadata, "users2.yaml", "collection: users\n")

        with pytest.raises(CollectionError, match="Duplicate collection"):
            CollectionLoader(metadata).load_all()

    def test_registered_collections_are_checked_against_the_schema(self):
        loader = CollectionLoader()

        with pytest.raises(CollectionError, match="'blob' is not one of"):
            loader.register(
                Collection(name="things", fields=[FieldDefinition(name="x", type="blob")])
            )
        assert loader.get_collection("things") is None


class TestDocumentSchema:
    def test_field_types_match_registry(self):
        field_schema = load_schema()["$defs"]["field"]["properties"]["type"]

        assert set(field_schema["enum"]) == set(FIELD_TYPES)

    def test_valid_document_has_no_issues(self):
        doc = {
            "collection": "notes",
            "fields": [{"name": "body", "type": "text", "max": 500}],
            "rules": {"list": "", "view": None},
        }

        assert validate_document(doc, "notes.yaml") == []

    def test_round_trip_of_registered_collection(self, loader):
        for name in loader.list_collections():
            doc = loader.get_collection(name).to_document()
            assert validate_document(doc, name) == []

    def test_issue_location(self):
        [issue] = validate_document({"collection": "notes", "fields": [{"name": "x"}]}, "n.yaml")

        assert issue.path == "fields[0]"
        assert str(issue) == "n.yaml at fields[0]: 'type' is a required property"
