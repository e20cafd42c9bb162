"""Storage adapters for recordkit."""

from recordkit.persistence.adapter import PersistenceAdapter
from recordkit.persistence.config import DatabaseConfig, create_adapter
from recordkit.persistence.sqlite import SQLiteAdapter

__all__ = ["DatabaseConfig", "PersistenceAdapter", "SQLiteAdapter", "create_adapter"]
