"""Where records are stored: a SQLite URL resolved from the environment.

recordkit keeps one SQLite database per process. The URL is always of the
form ``sqlite:///<path>``; ``sqlite:///:memory:`` keeps everything in memory
and disappears with the process.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from recordkit.persistence.adapter import PersistenceAdapter

SQLITE_PREFIX = "sqlite:///"
MEMORY = ":memory:"
DEFAULT_DB_NAME = "recordkit.db"


@dataclass
class DatabaseConfig:
    url: str

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """Pick the database URL.

        DATABASE_URL is used as given. Otherwise RECORDKIT_DB_PATH names the
        SQLite file (or ``:memory:``), and without either the database lives
        in ``<base_path>/data/recordkit.db``.
        """
        url = os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)
        db_path = os.environ.get("RECORDKIT_DB_PATH")
        if db_path:
            return cls(url=SQLITE_PREFIX + db_path)
        data_dir = (base_path / "data") if base_path else Path()
        return cls(url=f"{SQLITE_PREFIX}{data_dir / DEFAULT_DB_NAME}")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith(SQLITE_PREFIX)

    @property
    def sqlite_path(self) -> str:
        """The database file, or ``:memory:`` when the URL names no file."""
        return self.url[len(SQLITE_PREFIX):] or MEMORY

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and self.sqlite_path == MEMORY


def create_adapter(config: DatabaseConfig) -> PersistenceAdapter:
    """Build an unconnected SQLiteAdapter, creating the file's directory.

    Raises:
        ValueError: If the URL is not a sqlite:/// URL
    """
    if not config.is_sqlite:
        raise ValueError(f"Unsupported database URL scheme: {config.url}")

    from recordkit.persistence.sqlite import SQLiteAdapter

    if not config.is_memory:
        Path(config.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    return SQLiteAdapter(config.sqlite_path)
