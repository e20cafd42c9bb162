"""Hook registry for recordkit.

A HookRegistry owns one Hook per hook point. It is constructed at startup,
populated by application code, then frozen; after that it is read-only and
safe to share between concurrent operations.

Example:
    hooks = HookRegistry()

    @hooks.on_record_update.handler("tasks")
    async def stamp_reviewer(e: RecordEvent):
        e.record.set("reviewed", True)
        await e.next()

    hooks.freeze()
"""

import itertools
from collections.abc import Callable, Iterator

from recordkit.hooks.chain import FinalFn, Handler, HandlerFn, HookChain
from recordkit.hooks.types import HookEvent

MODEL_HOOKS = (
    "on_record_create",
    "on_record_update",
    "on_record_delete",
    "on_record_validate",
    "on_record_create_execute",
    "on_record_update_execute",
    "on_record_delete_execute",
    "on_record_after_create_success",
    "on_record_after_update_success",
    "on_record_after_delete_success",
    "on_record_after_create_error",
    "on_record_after_update_error",
    "on_record_after_delete_error",
)

REQUEST_HOOKS = (
    "on_records_list_request",
    "on_record_view_request",
    "on_record_create_request",
    "on_record_update_request",
    "on_record_delete_request",
)

OTHER_HOOKS = (
    "on_record_enrich",
    "on_realtime_subscribe_request",
    "on_realtime_message_send",
)

HOOK_POINTS = MODEL_HOOKS + REQUEST_HOOKS + OTHER_HOOKS


class Hook:
    """One hook point: an ordered list of handlers.

    Handlers run by ascending priority, then in registration order. Handlers
    without a collection filter run for every collection and interleave with
    collection-specific ones by registration order.
    """

    def __init__(self, name: str, registry: "HookRegistry | None" = None):
        self.name = name
        self._registry = registry
        self._handlers: list[Handler] = []
        self._counter = itertools.count()

    def __repr__(self) -> str:
        return f"Hook({self.name!r}, handlers={len(self._handlers)})"

    def __len__(self) -> int:
        return len(self._handlers)

    @property
    def frozen(self) -> bool:
        return self._registry is not None and self._registry.frozen

    def bind(
        self,
        handler: HandlerFn,
        *collections: str,
        priority: int = 0,
        id: str | None = None,
    ) -> str:
        """Register a handler and return its id.

        Args:
            handler: Async function receiving the event
            collections: Optional collection filter
            priority: Lower runs first (default 0)
            id: Explicit id; re-binding an existing id replaces that handler

        Raises:
            RuntimeError: If the registry is frozen
        """
        self._check_mutable()
        order = next(self._counter)
        handler_id = id or f"{self.name}:{getattr(handler, '__name__', 'handler')}:{order}"
        self._handlers = [h for h in self._handlers if h.id != handler_id]
        self._handlers.append(
            Handler(
                id=handler_id,
                func=handler,
                collections=frozenset(collections),
                priority=priority,
                order=order,
            )
        )
        return handler_id

    def handler(
        self, *collections: str, priority: int = 0, id: str | None = None
    ) -> Callable[[HandlerFn], HandlerFn]:
        """Decorator form of bind()."""

        def decorator(fn: HandlerFn) -> HandlerFn:
            self.bind(fn, *collections, priority=priority, id=id)
            return fn

        return decorator

    def unbind(self, id: str) -> bool:
        """Remove a handler by id. Returns False if there was none.

        Raises:
            RuntimeError: If the registry is frozen
        """
        self._check_mutable()
        before = len(self._handlers)
        self._handlers = [h for h in self._handlers if h.id != id]
        return len(self._handlers) != before

    def handlers_for(self, collection: str | None) -> list[Handler]:
        """Handlers that apply to a collection, in execution order."""
        matching = [h for h in self._handlers if h.applies_to(collection)]
        return sorted(matching, key=lambda h: (h.priority, h.order))

    async def trigger(self, event: HookEvent, final: FinalFn | None = None) -> HookChain:
        """Run the handlers for the event's collection around a final action."""
        chain = HookChain(self.name, self.handlers_for(event.collection_name), event, final)
        return await chain.run()

    def _check_mutable(self) -> None:
        if self.frozen:
            raise RuntimeError(f"Cannot change hook '{self.name}': the registry is frozen")


class HookRegistry:
    """All hook points of an application.

    Each hook point is an attribute named after it (``registry.on_record_create``).
    """

    def __init__(self) -> None:
        self._frozen = False
        self._hooks: dict[str, Hook] = {name: Hook(name, self) for name in HOOK_POINTS}
        for name, hook_point in self._hooks.items():
            setattr(self, name, hook_point)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Make the registry read-only. Idempotent."""
        self._frozen = True

    def get(self, name: str) -> Hook:
        """Get a hook point by name.

        Raises:
            ValueError: If there is no such hook point
        """
        if name not in self._hooks:
            raise ValueError(
                f"Unknown hook point '{name}'. Expected one of: {', '.join(HOOK_POINTS)}"
            )
        return self._hooks[name]

    def __iter__(self) -> Iterator[Hook]:
        return iter(self._hooks.values())

    def list_bound(self) -> list[str]:
        """Names of hook points that have at least one handler."""
        return [name for name, hook_point in self._hooks.items() if len(hook_point)]

    # Typed attribute declarations for the hook points set in __init__
    on_record_create: Hook
    on_record_update: Hook
    on_record_delete: Hook
    on_record_validate: Hook
    on_record_create_execute: Hook
    on_record_update_execute: Hook
    on_record_delete_execute: Hook
    on_record_after_create_success: Hook
    on_record_after_update_success: Hook
    on_record_after_delete_success: Hook
    on_record_after_create_error: Hook
    on_record_after_update_error: Hook
    on_record_after_delete_error: Hook
    on_records_list_request: Hook
    on_record_view_request: Hook
    on_record_create_request: Hook
    on_record_update_request: Hook
    on_record_delete_request: Hook
    on_record_enrich: Hook
    on_realtime_subscribe_request: Hook
    on_realtime_message_send: Hook
