"""Shared interface for storage adapters."""

from typing import Any, Protocol, runtime_checkable

from recordkit.metadata.models import Collection


@runtime_checkable
class PersistenceAdapter(Protocol):
    """Interface storage adapters must implement.

    Matches the public API of SQLiteAdapter. Values cross this boundary in
    their Record form (lists for multi-valued fields, bools, numbers);
    adapters encode and decode them for their own storage.
    """

    def connect(self) -> None: ...

    def close(self) -> None: ...

    @property
    def in_transaction(self) -> bool: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def savepoint(self, name: str) -> None: ...

    def release(self, name: str) -> None: ...

    def rollback_to(self, name: str) -> None: ...

    def initialize_collection(self, collection: Collection) -> None: ...

    def insert(self, collection: Collection, data: dict[str, Any]) -> None: ...

    def update(self, collection: Collection, id: str, data: dict[str, Any]) -> bool: ...

    def delete(self, collection: Collection, id: str) -> bool: ...

    def get(self, collection: Collection, id: str) -> dict[str, Any] | None: ...

    def query(
        self,
        collection: Collection,
        where: str | None = None,
        params: list[Any] | None = None,
        sort: list[tuple[str, bool]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...

    def count(
        self, collection: Collection, where: str | None = None, params: list[Any] | None = None
    ) -> int: ...

    def exists(
        self, collection: Collection, field: str, value: Any, exclude_id: str = ""
    ) -> bool: ...
