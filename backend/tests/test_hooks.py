"""Tests for the hook registry, chain executor and record enrichment."""

import pytest

from recordkit.core.outcomes import ApiError, HookAbortedError, Outcome, OutcomeKind
from recordkit.core.request import RequestInfo
from recordkit.hooks import (
    ChainState,
    HookRegistry,
    RecordEnrichEvent,
    RecordEvent,
    enrich_record,
)


@pytest.fixture
def post(make_record):
    return make_record("posts", id="post00000000001", title="Hello", status="draft")


@pytest.fixture
def task(make_record):
    return make_record("tasks", id="task00000000001", title="Chores")


def recorder(calls, name):
    async def handler(e):
        calls.append(name)
        await e.next()

    handler.__name__ = name
    return handler


# =============================================================================
# Ordering
# =============================================================================


class TestOrdering:
    @pytest.mark.asyncio
    async def test_handlers_run_in_registration_order_around_final(self, hooks, post):
        calls = []
        hooks.on_record_create.bind(recorder(calls, "first"))
        hooks.on_record_create.bind(recorder(calls, "second"))

        async def final(e):
            calls.append("final")

        chain = await hooks.on_record_create.trigger(RecordEvent(record=post), final)

        assert calls == ["first", "second", "final"]
        assert chain.state is ChainState.COMPLETED

    @pytest.mark.asyncio
    async def test_code_after_next_runs_after_final(self, hooks, post):
        calls = []

        async def around(e):
            calls.append("before")
            await e.next()
            calls.append("after")

        async def final(e):
            calls.append("final")

        hooks.on_record_create.bind(around)
        await hooks.on_record_create.trigger(RecordEvent(record=post), final)

        assert calls == ["before", "final", "after"]

    @pytest.mark.asyncio
    async def test_priority_runs_lower_first(self, hooks, post):
        calls = []
        hooks.on_record_update.bind(recorder(calls, "late"), priority=10)
        hooks.on_record_update.bind(recorder(calls, "early"), priority=-5)
        hooks.on_record_update.bind(recorder(calls, "default"))

        await hooks.on_record_update.trigger(RecordEvent(record=post))

        assert calls == ["early", "default", "late"]

    @pytest.mark.asyncio
    async def test_collection_filter(self, hooks, post, task):
        calls = []
        hooks.on_record_create.bind(recorder(calls, "posts-only"), "posts")
        hooks.on_record_create.bind(recorder(calls, "everyone"))

        await hooks.on_record_create.trigger(RecordEvent(record=task))
        assert calls == ["everyone"]

        calls.clear()
        await hooks.on_record_create.trigger(RecordEvent(record=post))
        assert calls == ["posts-only", "everyone"]

    @pytest.mark.asyncio
    async def test_chain_without_handlers_runs_final(self, hooks, post):
        ran = []

        async def final(e):
            ran.append(e.record.id)

        chain = await hooks.on_record_delete.trigger(RecordEvent(record=post), final)

        assert ran == [post.id]
        assert chain.completed


# =============================================================================
# Halting and errors
# =============================================================================


class TestHaltAndErrors:
    @pytest.mark.asyncio
    async def test_handler_without_next_halts(self, hooks, post):
        calls = []

        async def stop(e):
            calls.append("stop")

        hooks.on_record_create.bind(stop, id="stopper")
        hooks.on_record_create.bind(recorder(calls, "never"))

        async def final(e):
            calls.append("final")

        chain = await hooks.on_record_create.trigger(RecordEvent(record=post), final)

        assert calls == ["stop"]
        assert chain.halted
        assert chain.halted_by == "stopper"

    @pytest.mark.asyncio
    async def test_next_twice_is_an_error(self, hooks, post):
        async def greedy(e):
            await e.next()
            await e.next()

        hooks.on_record_create.bind(greedy)

        with pytest.raises(RuntimeError, match="more than once"):
            await hooks.on_record_create.trigger(RecordEvent(record=post))

    @pytest.mark.asyncio
    async def test_next_outside_chain_is_an_error(self, post):
        with pytest.raises(RuntimeError, match="outside"):
            await RecordEvent(record=post).next()

    @pytest.mark.asyncio
    async def test_plain_exceptions_become_hook_aborted(self, hooks, post):
        async def broken(e):
            raise KeyError("boom")

        hooks.on_record_create.bind(broken, id="broken")

        with pytest.raises(HookAbortedError) as exc_info:
            await hooks.on_record_create.trigger(RecordEvent(record=post))

        assert exc_info.value.data == {"handler": "broken"}
        assert Outcome.from_exception(exc_info.value).kind is OutcomeKind.HOOK_ABORTED

    @pytest.mark.asyncio
    async def test_api_error_keeps_status(self, hooks, post):
        async def refuse(e):
            raise ApiError(409, "Already taken.")

        hooks.on_record_create.bind(refuse)

        with pytest.raises(ApiError) as exc_info:
            await hooks.on_record_create.trigger(RecordEvent(record=post))

        outcome = Outcome.from_exception(exc_info.value)
        assert outcome.status_code == 409
        assert outcome.message == "Already taken."

    @pytest.mark.asyncio
    async def test_chain_runs_once(self, hooks, post):
        chain = await hooks.on_record_create.trigger(RecordEvent(record=post))

        with pytest.raises(RuntimeError, match="already ran"):
            await chain.run()


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    def test_freeze_blocks_bind_and_unbind(self, hooks):
        handler_id = hooks.on_record_create.bind(recorder([], "h"))
        hooks.freeze()

        with pytest.raises(RuntimeError, match="frozen"):
            hooks.on_record_create.bind(recorder([], "late"))
        with pytest.raises(RuntimeError, match="frozen"):
            hooks.on_record_create.unbind(handler_id)

    def test_unbind(self, hooks):
        handler_id = hooks.on_record_update.bind(recorder([], "h"))

        assert hooks.on_record_update.unbind(handler_id)
        assert not hooks.on_record_update.unbind(handler_id)
        assert len(hooks.on_record_update) == 0

    def test_rebinding_an_id_replaces_the_handler(self, hooks):
        hooks.on_record_update.bind(recorder([], "a"), id="same")
        hooks.on_record_update.bind(recorder([], "b"), id="same")

        assert len(hooks.on_record_update) == 1

    def test_decorator_registers(self, hooks):
        @hooks.on_record_validate.handler("tasks", priority=1)
        async def check(e):
            await e.next()

        [registered] = hooks.on_record_validate.handlers_for("tasks")
        assert registered.func is check
        assert hooks.on_record_validate.handlers_for("posts") == []
        assert hooks.list_bound() == ["on_record_validate"]

    def test_get_unknown_hook_point(self, hooks):
        with pytest.raises(ValueError, match="Unknown hook point"):
            hooks.get("on_record_explode")

    def test_every_hook_point_is_an_attribute(self):
        registry = HookRegistry()
        for hook_point in registry:
            assert getattr(registry, hook_point.name) is hook_point


# =============================================================================
# Enrichment
# =============================================================================


class TestEnrich:
    @pytest.mark.asyncio
    async def test_hidden_fields_removed_for_non_superusers(self, hooks, make_record):
        user = make_record("users", id="ann000000000001", email="ann@example.com", apiKey="s3cret")

        data = await enrich_record(hooks, user, RequestInfo())

        assert "apiKey" not in data
        assert data["email"] == "ann@example.com"
        assert data["collectionName"] == "users"

    @pytest.mark.asyncio
    async def test_superusers_see_hidden_fields(self, hooks, loader, make_record):
        user = make_record("users", id="ann000000000001", email="ann@example.com", apiKey="s3cret")
        admin = make_record("_superusers", id="root00000000001", email="root@example.com")

        data = await enrich_record(hooks, user, RequestInfo(auth=admin))

        assert data["apiKey"] == "s3cret"

    @pytest.mark.asyncio
    async def test_handlers_hide_unhide_and_add(self, hooks, make_record):
        user = make_record("users", id="ann000000000001", email="ann@example.com", apiKey="k")

        @hooks.on_record_enrich.handler("users")
        async def shape(e: RecordEnrichEvent):
            if e.info.auth_id != e.record.id:
                e.hide("email")
            else:
                e.unhide("apiKey")
            e.set_extra("initial", e.record.get("email")[0])
            await e.next()

        as_guest = await enrich_record(hooks, user, RequestInfo())
        as_self = await enrich_record(hooks, user, RequestInfo(auth=user))

        assert "email" not in as_guest
        assert as_guest["initial"] == "a"
        assert as_self["apiKey"] == "k"

    @pytest.mark.asyncio
    async def test_enrich_never_touches_the_record(self, hooks, post):
        @hooks.on_record_enrich.handler()
        async def mutate(e: RecordEnrichEvent):
            e.record.set("title", "changed")
            await e.next()

        data = await enrich_record(hooks, post, RequestInfo())

        assert data["title"] == "changed"
        assert post.get("title") == "Hello"
