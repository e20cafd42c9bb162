"""Tests for the SQLite adapter and database configuration."""

import pytest

from recordkit.core.outcomes import StorageFailure
from recordkit.persistence import DatabaseConfig, PersistenceAdapter, SQLiteAdapter, create_adapter


@pytest.fixture
def tasks(loader, records):
    return loader.get_collection("tasks")


class TestSQLiteAdapter:
    def test_implements_protocol(self, storage):
        assert isinstance(storage, PersistenceAdapter)

    def test_insert_and_get_round_trips_types(self, storage, tasks):
        storage.insert(tasks, {
            "id": "task00000000001",
            "title": "Chores",
            "done": True,
            "watchers": ["ann000000000001", "bob000000000001"],
        })

        row = storage.get(tasks, "task00000000001")

        assert row["done"] is True
        assert row["watchers"] == ["ann000000000001", "bob000000000001"]
        assert row["title"] == "Chores"

    def test_update_and_delete_report_missing_rows(self, storage, tasks):
        storage.insert(tasks, {"id": "task00000000001", "title": "Chores"})

        assert storage.update(tasks, "task00000000001", {"title": "Errands"})
        assert not storage.update(tasks, "missing00000001", {"title": "x"})
        assert storage.delete(tasks, "task00000000001")
        assert not storage.delete(tasks, "task00000000001")

    def test_query_sort_limit_offset(self, storage, tasks):
        for i, title in enumerate(["b", "c", "a"]):
            storage.insert(tasks, {"id": f"task0000000000{i}", "title": title})

        rows = storage.query(tasks, sort=[("title", True)], limit=2, offset=1)

        assert [r["title"] for r in rows] == ["b", "a"]

    def test_query_rejects_unknown_sort_field(self, storage, tasks):
        with pytest.raises(ValueError, match="sort field"):
            storage.query(tasks, sort=[("nope", False)])

    def test_where_fragment_with_params(self, storage, tasks):
        storage.insert(tasks, {"id": "task00000000001", "title": "a", "done": True})
        storage.insert(tasks, {"id": "task00000000002", "title": "b", "done": False})

        assert storage.count(tasks, where='"done" = ?', params=[1]) == 1

    def test_exists_is_case_insensitive(self, storage, loader, records):
        users = loader.get_collection("users")
        storage.insert(users, {"id": "ann000000000001", "email": "Ann@example.com"})

        assert storage.exists(users, "email", "ann@EXAMPLE.com")
        assert not storage.exists(users, "email", "ann@example.com", exclude_id="ann000000000001")

    def test_rollback_discards_writes(self, storage, tasks):
        storage.begin()
        storage.insert(tasks, {"id": "task00000000001", "title": "a"})
        assert storage.in_transaction
        storage.rollback()

        assert storage.get(tasks, "task00000000001") is None

    def test_sqlite_errors_become_storage_failures(self, storage, tasks):
        storage.insert(tasks, {"id": "task00000000001", "title": "a"})

        with pytest.raises(StorageFailure):
            storage.insert(tasks, {"id": "task00000000001", "title": "dup"})

    def test_requires_connection(self, tasks):
        with pytest.raises(RuntimeError, match="not connected"):
            SQLiteAdapter().get(tasks, "x")


class TestDatabaseConfig:
    def test_database_url_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///elsewhere.db")
        monkeypatch.setenv("RECORDKIT_DB_PATH", "/tmp/ignored.db")

        assert DatabaseConfig.from_env(tmp_path).url == "sqlite:///elsewhere.db"

    def test_db_path_env(self, monkeypatch, tmp_path):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("RECORDKIT_DB_PATH", str(tmp_path / "x.db"))

        assert DatabaseConfig.from_env().sqlite_path == str(tmp_path / "x.db")

    def test_default_under_base_path(self, monkeypatch, tmp_path):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("RECORDKIT_DB_PATH", raising=False)

        config = DatabaseConfig.from_env(tmp_path)

        assert config.sqlite_path == str(tmp_path / "data" / "recordkit.db")

    def test_memory_url(self):
        assert DatabaseConfig("sqlite:///:memory:").sqlite_path == ":memory:"

    def test_memory_db_path_env(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("RECORDKIT_DB_PATH", ":memory:")

        config = DatabaseConfig.from_env()

        assert config.is_memory
        assert isinstance(create_adapter(config), SQLiteAdapter)

    def test_default_without_base_path(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("RECORDKIT_DB_PATH", raising=False)

        assert DatabaseConfig.from_env().url == "sqlite:///recordkit.db"

    def test_create_adapter_makes_parent_directory(self, tmp_path):
        db_file = tmp_path / "nested" / "app.db"

        adapter = create_adapter(DatabaseConfig(f"sqlite:///{db_file}"))

        assert isinstance(adapter, SQLiteAdapter)
        assert db_file.parent.is_dir()

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported"):
            create_adapter(DatabaseConfig("postgresql://localhost/db"))
