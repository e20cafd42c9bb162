"""Tests for record mutations through the model hook chain."""

import asyncio

import pytest

from recordkit.core.outcomes import HookAbortedError, StorageFailure, ValidationFailed
from recordkit.core.record import Record
from recordkit.hooks import RecordErrorEvent, RecordEvent
from recordkit.metadata.models import Collection, FieldDefinition

ANN = "ann000000000001"


@pytest.fixture
def ann(insert):
    return insert("users", id=ANN, email="ann@example.com", name="Ann")


def stored(records, record):
    return records.find_by_id(record.collection.name, record.id)


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


# =============================================================================
# Cascade mode
# =============================================================================


class TestCascadeSave:
    @pytest.mark.asyncio
    async def test_create_sets_system_fields(self, records, make_record):
        record = make_record("tasks", title="Chores")

        assert await records.save(record)

        assert len(record.id) == 15
        assert not record.is_new
        row = stored(records, record)
        assert row.get("created") and row.get("created") == row.get("updated")

    @pytest.mark.asyncio
    async def test_hook_points_fire_in_order(self, records, hooks, make_record):
        calls = []

        def track(name):
            async def handler(e):
                calls.append(name)
                await e.next()
            return handler

        for name in (
            "on_record_create",
            "on_record_validate",
            "on_record_create_execute",
            "on_record_after_create_success",
        ):
            hooks.get(name).bind(track(name))

        await records.save(make_record("tasks", title="Chores"))

        assert calls == [
            "on_record_create",
            "on_record_validate",
            "on_record_create_execute",
            "on_record_after_create_success",
        ]

    @pytest.mark.asyncio
    async def test_mutations_before_next_are_persisted(self, records, hooks, make_record):
        @hooks.on_record_update.handler("tasks")
        async def mark_reviewed(e: RecordEvent):
            e.record.set("reviewed", True)
            await e.next()

        record = make_record("tasks", title="Chores")
        await records.save(record)
        record.set("done", True)
        await records.save(record)

        row = stored(records, record)
        assert row.get("done") is True
        assert row.get("reviewed") is True

    @pytest.mark.asyncio
    async def test_mutations_after_next_stay_in_memory(self, records, hooks, make_record):
        @hooks.on_record_create.handler("posts")
        async def rename_late(e: RecordEvent):
            e.record.set("status", "draft")
            await e.next()
            e.record.set("title", "Renamed")

        record = make_record("posts", title="Hello")
        await records.save(record)

        row = stored(records, record)
        assert row.get("status") == "draft"
        assert row.get("title") == "Hello"
        assert record.get("title") == "Renamed"

    @pytest.mark.asyncio
    async def test_success_hooks_run_after_commit(self, records, hooks, make_record):
        seen = []

        @hooks.on_record_after_create_success.handler("tasks")
        async def after(e: RecordEvent):
            seen.append((records.storage.in_transaction, stored(records, e.record) is not None))
            await e.next()

        await records.save(make_record("tasks", title="Chores"))

        assert seen == [(False, True)]

    @pytest.mark.asyncio
    async def test_halted_update_writes_nothing(self, records, hooks, insert):
        task = insert("tasks", title="Chores")
        post_hooks = []

        @hooks.on_record_update.handler("tasks")
        async def freeze_done(e: RecordEvent):
            if e.record.get("done"):
                return
            await e.next()

        @hooks.on_record_after_update_success.handler()
        async def succeeded(e):
            post_hooks.append("success")
            await e.next()

        @hooks.on_record_after_update_error.handler()
        async def failed(e):
            post_hooks.append("error")
            await e.next()

        task.set("done", True)
        assert await records.save(task) is False

        assert stored(records, task).get("done") is False
        assert post_hooks == []

    @pytest.mark.asyncio
    async def test_validate_handlers_can_reject(self, records, hooks, make_record):
        @hooks.on_record_validate.handler("tasks")
        async def no_shouting(e: RecordEvent):
            if e.record.get("title").isupper():
                raise ValidationFailed({"title": "No shouting."})
            await e.next()

        with pytest.raises(ValidationFailed) as exc_info:
            await records.save(make_record("tasks", title="CHORES"))

        assert exc_info.value.errors == {"title": "No shouting."}
        assert records.count("tasks") == 0

    @pytest.mark.asyncio
    async def test_core_validation_cannot_be_skipped_by_handlers(self, records, hooks, make_record):
        @hooks.on_record_validate.handler()
        async def passthrough(e):
            await e.next()

        with pytest.raises(ValidationFailed) as exc_info:
            await records.save(make_record("tasks", title=""))

        assert "title" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_delete(self, records, hooks, insert):
        task = insert("tasks", title="Chores")
        deleted = []

        @hooks.on_record_after_delete_success.handler("tasks")
        async def after(e: RecordEvent):
            deleted.append(e.record.id)
            await e.next()

        assert await records.delete(task)

        assert stored(records, task) is None
        assert deleted == [task.id]

    @pytest.mark.asyncio
    async def test_update_of_vanished_record_fails(self, records, insert):
        task = insert("tasks", title="Chores")
        records.storage.delete(task.collection, task.id)

        task.set("done", True)
        with pytest.raises(StorageFailure):
            await records.save(task)


# =============================================================================
# Nested mutations
# =============================================================================


class TestNestedMutations:
    @pytest.mark.asyncio
    async def test_cascade_save_from_success_handler_runs_hooks(self, records, hooks, loader, make_record):
        created = []

        @hooks.on_record_after_create_success.handler("tasks")
        async def add_note(e: RecordEvent):
            await e.next()
            note = Record(loader.get_collection("other"), {"name": "note", "task": e.record.id})
            await e.records.save(note)

        @hooks.on_record_create.handler("other")
        async def count_notes(e: RecordEvent):
            created.append(e.record.get("name"))
            await e.next()

        task = make_record("tasks", title="Chores")
        await records.save(task)

        assert created == ["note"]
        [note] = records.find_all("other")
        assert note.get("task") == task.id

    @pytest.mark.asyncio
    async def test_direct_save_from_success_handler_skips_hooks(self, records, hooks, loader, make_record):
        created = []

        @hooks.on_record_after_create_success.handler("tasks")
        async def add_note(e: RecordEvent):
            await e.next()
            note = Record(loader.get_collection("other"), {"name": "note", "task": e.record.id})
            await e.records.save_direct(note)

        @hooks.on_record_create.handler("other")
        async def count_notes(e: RecordEvent):
            created.append(e.record.get("name"))
            await e.next()

        await records.save(make_record("tasks", title="Chores"))

        assert created == []
        assert records.count("other") == 1

    @pytest.mark.asyncio
    async def test_nested_saves_join_the_transaction(self, records, hooks, loader, make_record):
        order = []

        @hooks.on_record_create_execute.handler("tasks")
        async def add_note(e: RecordEvent):
            await e.next()
            note = Record(loader.get_collection("other"), {"name": "note", "task": e.record.id})
            await e.records.save(note)

        @hooks.on_record_after_create_success.handler()
        async def after(e: RecordEvent):
            order.append(e.collection.name)
            await e.next()

        await records.save(make_record("tasks", title="Chores"))

        assert order == ["tasks", "other"]

    @pytest.mark.asyncio
    async def test_failed_nested_operation_gets_error_hook(self, records, hooks, loader, make_record):
        errors = []

        @hooks.on_record_create_execute.handler("tasks")
        async def add_bad_note(e: RecordEvent):
            await e.next()
            note = Record(loader.get_collection("other"), {"task": "missing00000001"})
            try:
                await e.records.save(note)
            except ValidationFailed:
                pass

        @hooks.on_record_after_create_error.handler("other")
        async def failed(e: RecordErrorEvent):
            errors.append(type(e.error))
            await e.next()

        task = make_record("tasks", title="Chores")
        await records.save(task)

        assert stored(records, task) is not None
        assert errors == [ValidationFailed]

    @pytest.mark.asyncio
    async def test_nested_failure_after_write_is_undone(self, records, hooks, loader, make_record):
        fired = []

        @hooks.on_record_create_execute.handler("tasks")
        async def add_note(e: RecordEvent):
            await e.next()
            note = Record(loader.get_collection("other"), {"name": "note", "task": e.record.id})
            try:
                await e.records.save(note)
            except HookAbortedError:
                pass

        @hooks.on_record_create.handler("other")
        async def explode(e: RecordEvent):
            await e.next()
            raise RuntimeError("notifier down")

        @hooks.on_record_after_create_success.handler()
        async def succeeded(e: RecordEvent):
            fired.append((e.collection.name, "success"))
            await e.next()

        @hooks.on_record_after_create_error.handler()
        async def failed(e: RecordErrorEvent):
            fired.append((e.collection.name, "error"))
            await e.next()

        task = make_record("tasks", title="Chores")
        await records.save(task)

        assert stored(records, task) is not None
        assert records.count("other") == 0
        assert fired == [("tasks", "success"), ("other", "error")]

    @pytest.mark.asyncio
    async def test_post_hooks_match_committed_rows(self, records, hooks, loader, make_record):
        outcomes = {}

        @hooks.on_record_create_execute.handler("tasks")
        async def add_notes(e: RecordEvent):
            await e.next()
            for name in ("kept", "dropped", "also kept"):
                note = Record(loader.get_collection("other"), {"name": name, "task": e.record.id})
                try:
                    await e.records.save(note)
                except HookAbortedError:
                    pass

        @hooks.on_record_create.handler("other")
        async def drop_one(e: RecordEvent):
            await e.next()
            if e.record.get("name") == "dropped":
                raise RuntimeError("rejected")

        @hooks.on_record_after_create_success.handler()
        async def succeeded(e: RecordEvent):
            outcomes[e.record.id] = "success"
            await e.next()

        @hooks.on_record_after_create_error.handler()
        async def failed(e: RecordErrorEvent):
            outcomes[e.record.id or e.record.get("name")] = "error"
            await e.next()

        await records.save(make_record("tasks", title="Chores"))

        committed = {r.id for r in records.find_all("tasks") + records.find_all("other")}
        succeeded_ids = {key for key, value in outcomes.items() if value == "success"}
        assert succeeded_ids == committed
        assert len(committed) == 3
        assert list(outcomes.values()).count("error") == 1
        assert records.count("other", "name = ?", ["dropped"]) == 0


# =============================================================================
# Rollback and cancellation
# =============================================================================


class TestRollback:
    @pytest.mark.asyncio
    async def test_error_after_write_rolls_back(self, records, hooks, make_record):
        errors = []

        @hooks.on_record_create_execute.handler("tasks")
        async def explode(e: RecordEvent):
            await e.next()
            raise ValueError("disk on fire")

        @hooks.on_record_after_create_error.handler("tasks")
        async def failed(e: RecordErrorEvent):
            errors.append(str(e.error))
            await e.next()

        record = make_record("tasks", title="Chores")
        with pytest.raises(HookAbortedError, match="disk on fire"):
            await records.save(record)

        assert records.count("tasks") == 0
        assert errors == ["disk on fire"]
        assert record.is_new

    @pytest.mark.asyncio
    async def test_rollback_undoes_nested_writes(self, records, hooks, loader, make_record):
        errors = []

        @hooks.on_record_create_execute.handler("tasks")
        async def add_note_then_fail(e: RecordEvent):
            await e.next()
            note = Record(loader.get_collection("other"), {"name": "note", "task": e.record.id})
            await e.records.save(note)
            raise ValueError("late failure")

        @hooks.on_record_after_create_error.handler()
        async def failed(e: RecordErrorEvent):
            errors.append(e.collection.name)
            await e.next()

        with pytest.raises(HookAbortedError):
            await records.save(make_record("tasks", title="Chores"))

        assert records.count("tasks") == 0
        assert records.count("other") == 0
        assert sorted(errors) == ["other", "tasks"]

    @pytest.mark.asyncio
    async def test_cancel_before_commit_rolls_back(self, records, hooks, make_record):
        started = asyncio.Event()
        errors = []

        @hooks.on_record_create_execute.handler("tasks")
        async def slow(e: RecordEvent):
            await e.next()
            started.set()
            await asyncio.Event().wait()

        @hooks.on_record_after_create_error.handler("tasks")
        async def failed(e: RecordErrorEvent):
            errors.append(type(e.error))
            await e.next()

        running = asyncio.create_task(records.save(make_record("tasks", title="Chores")))
        await started.wait()
        running.cancel()

        with pytest.raises(asyncio.CancelledError):
            await running

        assert records.count("tasks") == 0
        assert errors == [asyncio.CancelledError]

    @pytest.mark.asyncio
    async def test_cancel_after_commit_keeps_write(self, records, hooks, make_record):
        entered = asyncio.Event()
        release = asyncio.Event()
        notified = []

        @hooks.on_record_after_create_success.handler("tasks")
        async def notify(e: RecordEvent):
            entered.set()
            await release.wait()
            notified.append(e.record.id)
            await e.next()

        record = make_record("tasks", title="Chores")
        running = asyncio.create_task(records.save(record))
        await entered.wait()
        running.cancel()

        with pytest.raises(asyncio.CancelledError):
            await running
        release.set()
        await settle()

        assert records.count("tasks") == 1
        assert notified == [record.id]


# =============================================================================
# Direct mode and views
# =============================================================================


class TestDirectMode:
    @pytest.mark.asyncio
    async def test_direct_save_skips_hooks_but_validates(self, records, hooks, make_record):
        calls = []

        @hooks.on_record_create.handler()
        async def never(e):
            calls.append("create")
            await e.next()

        await records.save_direct(make_record("tasks", title="Chores"))
        with pytest.raises(ValidationFailed):
            await records.save_direct(make_record("tasks", title=""))

        assert calls == []
        assert records.count("tasks") == 1

    @pytest.mark.asyncio
    async def test_direct_delete(self, records, insert):
        task = insert("tasks", title="Chores")

        await records.delete_direct(task)

        assert stored(records, task) is None


class TestViews:
    @pytest.fixture
    def titles(self, loader, records):
        view = Collection(
            name="post_titles",
            type="view",
            fields=[FieldDefinition(name="title", type="text")],
            view_query="SELECT id, title FROM posts",
        )
        loader.register(view)
        records.storage.initialize_collection(view)
        return view

    def test_view_reflects_source_rows(self, records, insert, titles):
        insert("posts", title="Hello")

        [row] = records.find_all("post_titles")
        assert row.get("title") == "Hello"

    @pytest.mark.asyncio
    async def test_views_are_read_only(self, records, titles):
        with pytest.raises(ValidationFailed, match="read-only"):
            await records.save(Record(titles, {"title": "x"}))
