"""Model-level mutation orchestrator.

Every record mutation goes through RecordService. In cascade mode (save,
delete) the mutation runs the full model hook chain:

    on_record_<action>           (Model-Pre)
      on_record_validate         (create/update; final action: RecordValidator)
      on_record_<action>_execute (final action: storage write)
    on_record_after_<action>_success | on_record_after_<action>_error

Direct mode (save_direct, delete_direct) skips every hook but still runs
core validation.

The whole chain runs inside a storage transaction. Saves made by handlers
in the same task join the outer transaction. Post-Success handlers run only
once the outermost transaction has committed; on rollback every operation of
the transaction gets its Post-Error chain instead.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from recordkit.core.datetimes import format_datetime, now_utc
from recordkit.core.outcomes import StorageFailure, ValidationFailed
from recordkit.core.record import Record
from recordkit.hooks.chain import ChainState
from recordkit.hooks.registry import HookRegistry
from recordkit.hooks.types import RecordErrorEvent, RecordEvent
from recordkit.metadata.loader import CollectionLoader
from recordkit.metadata.models import Collection
from recordkit.persistence.adapter import PersistenceAdapter
from recordkit.validation.validator import RecordValidator

logger = logging.getLogger(__name__)


@dataclass
class _Operation:
    """One cascade-mode mutation inside a transaction."""

    action: str
    record: Record
    state: tuple[bool, dict[str, Any]]
    persisted: bool = False
    error: BaseException | None = None


@dataclass
class Transaction:
    """Operations of the outermost transaction, in start order."""

    operations: list[_Operation] = field(default_factory=list)
    savepoints: int = 0


_current_transaction: ContextVar[Transaction | None] = ContextVar(
    "recordkit_transaction", default=None
)


class RecordService:
    """Reads and mutations of records.

    Usage:
        records = RecordService(loader, adapter, hooks)
        record = Record(loader.get_collection("posts"), {"title": "Hello"})
        await records.save(record)
    """

    def __init__(
        self,
        collections: CollectionLoader,
        storage: PersistenceAdapter,
        hooks: HookRegistry | None = None,
        validator: RecordValidator | None = None,
    ):
        self.collections = collections
        self.storage = storage
        self.hooks = hooks or HookRegistry()
        self.validator = validator or RecordValidator(lookup=self)
        self._lock = asyncio.Lock()

    def initialize_schema(self) -> None:
        """Create tables for every collection, then views."""
        names = self.collections.list_collections()
        ordered = [self.collections.get_collection(name) for name in names]
        for collection in sorted(ordered, key=lambda c: c.is_view):
            self.storage.initialize_collection(collection)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def collection(self, name: str) -> Collection:
        """Get a collection by name.

        Raises:
            LookupError: If there is no such collection
        """
        collection = self.collections.get_collection(name)
        if collection is None:
            raise LookupError(f"Unknown collection '{name}'")
        return collection

    def find_by_id(self, collection: str, id: str) -> Record | None:
        target = self.collections.get_collection(collection)
        if target is None or not id:
            return None
        row = self.storage.get(target, id)
        return self._to_record(target, row) if row is not None else None

    def find_all(self, collection: str) -> list[Record]:
        return self.query(collection)

    def query(
        self,
        collection: str,
        where: str | None = None,
        params: list[Any] | None = None,
        sort: list[tuple[str, bool]] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Record]:
        target = self.collection(collection)
        rows = self.storage.query(
            target, where=where, params=params, sort=sort, limit=limit, offset=offset
        )
        return [self._to_record(target, row) for row in rows]

    def count(
        self, collection: str, where: str | None = None, params: list[Any] | None = None
    ) -> int:
        return self.storage.count(self.collection(collection), where=where, params=params)

    def exists(self, collection: str, field: str, value: Any, exclude_id: str = "") -> bool:
        return self.storage.exists(self.collection(collection), field, value, exclude_id)

    def _to_record(self, collection: Collection, row: dict[str, Any]) -> Record:
        record = Record(collection)
        record.load(row)
        record.mark_persisted()
        return record

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Run the block in a storage transaction.

        Nested use in the same task context joins the outer transaction
        under a savepoint, so a failed nested block leaves no writes behind
        even when the caller handles the error.
        """
        outer = _current_transaction.get()
        if outer is not None:
            async with self._savepoint(outer):
                yield outer
            return

        tx = Transaction()
        error: BaseException | None = None

        async with self._lock:
            token = _current_transaction.set(tx)
            try:
                self.storage.begin()
                try:
                    yield tx
                    self.storage.commit()
                except BaseException as e:
                    error = e
                    self._rollback()
            finally:
                _current_transaction.reset(token)

        if error is not None:
            logger.warning("Transaction rolled back: %r", error)
            for operation in tx.operations:
                operation.record.restore_persistence_state(operation.state)
            await asyncio.shield(self._after_error(tx, error))
            raise error

        await asyncio.shield(self._after_success(tx))

    @asynccontextmanager
    async def _savepoint(self, tx: Transaction) -> AsyncIterator[None]:
        tx.savepoints += 1
        name = f"recordkit_sp_{tx.savepoints}"
        start = len(tx.operations)
        self.storage.savepoint(name)
        try:
            yield
        except BaseException as e:
            self.storage.rollback_to(name)
            for operation in tx.operations[start:]:
                if operation.persisted:
                    operation.record.restore_persistence_state(operation.state)
                    operation.persisted = False
                if operation.error is None:
                    operation.error = e
            raise
        self.storage.release(name)

    def _rollback(self) -> None:
        try:
            self.storage.rollback()
        except StorageFailure:
            logger.exception("Rollback failed")

    async def _after_success(self, tx: Transaction) -> None:
        for operation in tx.operations:
            if operation.error is not None:
                await self._fire_error(operation, operation.error)
            elif operation.persisted:
                await self._fire_success(operation)

    async def _after_error(self, tx: Transaction, error: BaseException) -> None:
        for operation in tx.operations:
            if operation.error is not None:
                await self._fire_error(operation, operation.error)
            elif operation.persisted:
                await self._fire_error(operation, error)

    async def _fire_success(self, operation: _Operation) -> None:
        hook = self.hooks.get(f"on_record_after_{operation.action}_success")
        event = RecordEvent(record=operation.record, action=operation.action, records=self)
        try:
            await hook.trigger(event)
        except Exception:
            # Committed writes can't be undone by a failing side effect
            logger.exception(
                "%s handler failed for %r", hook.name, operation.record
            )

    async def _fire_error(self, operation: _Operation, error: BaseException) -> None:
        hook = self.hooks.get(f"on_record_after_{operation.action}_error")
        event = RecordErrorEvent(
            record=operation.record, action=operation.action, records=self, error=error
        )
        try:
            await hook.trigger(event)
        except Exception:
            logger.exception("%s handler failed for %r", hook.name, operation.record)

    # -------------------------------------------------------------------------
    # Cascade mode
    # -------------------------------------------------------------------------

    async def save(self, record: Record) -> bool:
        """Create or update a record through the full hook chain.

        Returns:
            True if the record was written, False if a handler halted the chain

        Raises:
            RecordKitError: Validation, storage or handler failure (after
                the transaction rolled back and Post-Error ran)
        """
        self._check_writable(record.collection)
        action = "create" if record.is_new else "update"
        return await self._run(action, record, self._write)

    async def delete(self, record: Record) -> bool:
        """Delete a record through the full hook chain.

        Returns:
            True if the record was deleted, False if a handler halted the chain
        """
        self._check_writable(record.collection)
        return await self._run("delete", record, self._remove)

    async def _run(self, action: str, record: Record, write: Any) -> bool:
        async with self.transaction() as tx:
            operation = _Operation(action, record, record.persistence_state())
            tx.operations.append(operation)
            event = RecordEvent(record=record, action=action, records=self)

            async def execute(e: RecordEvent) -> None:
                if action != "delete":
                    validate_event = RecordEvent(record=e.record, action=action, records=self)
                    validated = await self.hooks.on_record_validate.trigger(
                        validate_event, self._validate
                    )
                    if validated.state is not ChainState.COMPLETED:
                        return

                async def persist(ev: RecordEvent) -> None:
                    await write(ev.record)
                    operation.persisted = True

                execute_hook = self.hooks.get(f"on_record_{action}_execute")
                execute_event = RecordEvent(record=e.record, action=action, records=self)
                await execute_hook.trigger(execute_event, persist)

            try:
                await self.hooks.get(f"on_record_{action}").trigger(event, execute)
            except BaseException as e:
                operation.error = e
                raise

            if not operation.persisted:
                # Halted: nothing written, no post hooks
                tx.operations.remove(operation)
            return operation.persisted

    async def _validate(self, event: RecordEvent) -> None:
        self.validator.validate(event.record)

    # -------------------------------------------------------------------------
    # Direct mode
    # -------------------------------------------------------------------------

    async def save_direct(self, record: Record) -> None:
        """Validate and write a record without running any hooks."""
        self._check_writable(record.collection)
        async with self.transaction():
            self.validator.validate(record)
            await self._write(record)

    async def delete_direct(self, record: Record) -> None:
        """Delete a record without running any hooks."""
        self._check_writable(record.collection)
        async with self.transaction():
            await self._remove(record)

    # -------------------------------------------------------------------------
    # Storage writes
    # -------------------------------------------------------------------------

    async def _write(self, record: Record) -> None:
        now = format_datetime(now_utc())
        collection = record.collection
        if record.is_new:
            record.ensure_id()
            if not record.get("created"):
                record.set("created", now)
            record.set("updated", now)
            self.storage.insert(collection, record.to_dict())
        else:
            record.set("updated", now)
            if not self.storage.update(collection, record.id, record.to_dict()):
                raise StorageFailure(f"Record '{record.id}' no longer exists")
        record.mark_persisted()

    async def _remove(self, record: Record) -> None:
        if not self.storage.delete(record.collection, record.id):
            raise StorageFailure(f"Record '{record.id}' no longer exists")

    def _check_writable(self, collection: Collection) -> None:
        if collection.is_view:
            raise ValidationFailed({}, f"View collection '{collection.name}' is read-only.")
