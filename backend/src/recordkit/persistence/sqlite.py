"""SQLite persistence adapter."""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from recordkit.core.outcomes import StorageFailure
from recordkit.core.types import get_storage_type
from recordkit.metadata.models import Collection, FieldDefinition

logger = logging.getLogger(__name__)


def quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteAdapter:
    """SQLite persistence adapter.

    The connection runs in autocommit mode; begin(), commit() and rollback()
    delimit explicit transactions. sqlite3 errors surface as StorageFailure.
    """

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        self.conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Establish database connection."""
        self.conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self.conn is not None and self.conn.in_transaction

    def begin(self) -> None:
        self._execute("BEGIN")

    def commit(self) -> None:
        self._execute("COMMIT")

    def rollback(self) -> None:
        if self.in_transaction:
            self._execute("ROLLBACK")

    def savepoint(self, name: str) -> None:
        self._execute(f"SAVEPOINT {quote(name)}")

    def release(self, name: str) -> None:
        self._execute(f"RELEASE SAVEPOINT {quote(name)}")

    def rollback_to(self, name: str) -> None:
        """Undo everything since the savepoint and release it."""
        self._execute(f"ROLLBACK TO SAVEPOINT {quote(name)}")
        self._execute(f"RELEASE SAVEPOINT {quote(name)}")

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def initialize_collection(self, collection: Collection) -> None:
        """Create the table (or view) for a collection if it doesn't exist."""
        table_name = quote(collection.name)

        if collection.is_view:
            sql = f"CREATE VIEW IF NOT EXISTS {table_name} AS {collection.view_query}"
            self._execute(sql)
            return

        columns = []
        for field in collection.all_fields():
            storage_type = "TEXT" if field.is_multi else get_storage_type(field.type)
            col_def = f"{quote(field.name)} {storage_type}"
            if field.name == "id":
                col_def += " PRIMARY KEY NOT NULL"
            columns.append(col_def)

        sql = f"CREATE TABLE IF NOT EXISTS {table_name} ({', '.join(columns)})"
        self._execute(sql)

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def insert(self, collection: Collection, data: dict[str, Any]) -> None:
        """Insert a new row."""
        fields = [f for f in collection.all_fields() if f.name in data]
        columns = ", ".join(quote(f.name) for f in fields)
        placeholders = ", ".join("?" for _ in fields)
        values = [self._encode(f, data[f.name]) for f in fields]

        sql = f"INSERT INTO {quote(collection.name)} ({columns}) VALUES ({placeholders})"
        self._execute(sql, values)

    def update(self, collection: Collection, id: str, data: dict[str, Any]) -> bool:
        """Update an existing row. Returns False if no row matched."""
        fields = [f for f in collection.all_fields() if f.name in data and f.name != "id"]
        if not fields:
            return self.get(collection, id) is not None

        set_clause = ", ".join(f"{quote(f.name)} = ?" for f in fields)
        values = [self._encode(f, data[f.name]) for f in fields]
        values.append(id)

        sql = f"UPDATE {quote(collection.name)} SET {set_clause} WHERE id = ?"
        cursor = self._execute(sql, values)
        return cursor.rowcount > 0

    def delete(self, collection: Collection, id: str) -> bool:
        """Delete a row. Returns False if no row matched."""
        sql = f"DELETE FROM {quote(collection.name)} WHERE id = ?"
        cursor = self._execute(sql, [id])
        return cursor.rowcount > 0

    def get(self, collection: Collection, id: str) -> dict[str, Any] | None:
        """Fetch a single row by id."""
        sql = f"SELECT * FROM {quote(collection.name)} WHERE id = ?"
        row = self._execute(sql, [id]).fetchone()
        if row:
            return self._decode_row(collection, row)
        return None

    def query(
        self,
        collection: Collection,
        where: str | None = None,
        params: list[Any] | None = None,
        sort: list[tuple[str, bool]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query rows with a WHERE fragment, sorting and pagination.

        Args:
            where: Parameterised WHERE fragment (without the keyword)
            params: Parameters for the fragment
            sort: (field, descending) pairs
            limit: Maximum number of rows
            offset: Rows to skip
        """
        table_name = quote(collection.name)
        where_clause = f" WHERE {where}" if where else ""

        order_clause = ""
        if sort:
            order_parts = []
            for field_name, descending in sort:
                if collection.get_field(field_name) is None:
                    raise ValueError(f"Unknown sort field '{field_name}'")
                direction = "DESC" if descending else "ASC"
                order_parts.append(f"{quote(field_name)} {direction}")
            order_clause = f" ORDER BY {', '.join(order_parts)}"

        limit_clause = ""
        if limit is not None:
            limit_clause = f" LIMIT {int(limit)} OFFSET {int(offset)}"

        sql = f"SELECT * FROM {table_name}{where_clause}{order_clause}{limit_clause}"
        cursor = self._execute(sql, params or [])
        return [self._decode_row(collection, row) for row in cursor.fetchall()]

    def count(
        self, collection: Collection, where: str | None = None, params: list[Any] | None = None
    ) -> int:
        where_clause = f" WHERE {where}" if where else ""
        sql = f"SELECT COUNT(*) FROM {quote(collection.name)}{where_clause}"
        return self._execute(sql, params or []).fetchone()[0]

    def exists(
        self, collection: Collection, field: str, value: Any, exclude_id: str = ""
    ) -> bool:
        """Check whether another row holds a value (case-insensitive for text)."""
        sql = (
            f"SELECT 1 FROM {quote(collection.name)} "
            f"WHERE LOWER({quote(field)}) = LOWER(?) AND id != ? LIMIT 1"
        )
        return self._execute(sql, [value, exclude_id]).fetchone() is not None

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _execute(self, sql: str, params: list[Any] | None = None) -> sqlite3.Cursor:
        if not self.conn:
            raise RuntimeError("Database not connected")
        try:
            return self.conn.execute(sql, params or [])
        except sqlite3.Error as e:
            logger.error("SQLite error for %s: %s", sql.split(" ", 1)[0], e)
            raise StorageFailure(f"Storage error: {e}") from e

    def _encode(self, field: FieldDefinition, value: Any) -> Any:
        if field.is_multi:
            return json.dumps(list(value or []))
        if field.type == "json":
            return None if value is None else json.dumps(value)
        if field.type == "bool":
            return 1 if value else 0
        return value

    def _decode(self, field: FieldDefinition, raw: Any) -> Any:
        if field.is_multi:
            if not raw:
                return []
            try:
                decoded = json.loads(raw)
            except (TypeError, ValueError):
                return [str(raw)]
            return decoded if isinstance(decoded, list) else [decoded]
        if field.type == "json":
            if raw is None:
                return None
            try:
                return json.loads(raw)
            except (TypeError, ValueError):
                return raw
        if field.type == "bool":
            return bool(raw)
        if raw is None:
            return None
        return raw

    def _decode_row(self, collection: Collection, row: sqlite3.Row) -> dict[str, Any]:
        data = dict(row)
        result: dict[str, Any] = {}
        for key, raw in data.items():
            field = collection.get_field(key)
            result[key] = self._decode(field, raw) if field is not None else raw
        return result
