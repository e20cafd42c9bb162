"""Hook chain executor.

A chain runs the handlers registered for one hook point, in order, around a
final action. Each handler must call ``await e.next()`` to hand control to
the next handler; the last ``next()`` runs the final action. A handler that
returns without calling ``next()`` halts the chain there, so the final
action never runs.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from recordkit.core.outcomes import HookAbortedError, RecordKitError
from recordkit.hooks.types import HookEvent

logger = logging.getLogger(__name__)

# Handler signature: async (event) -> None
HandlerFn = Callable[[Any], Awaitable[None]]

# Final action signature: async (event) -> None
FinalFn = Callable[[Any], Awaitable[None]]


class ChainState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"  # final action ran
    HALTED = "halted"  # a handler did not continue
    FAILED = "failed"  # a handler or the final action raised


@dataclass(frozen=True)
class Handler:
    """A registered handler.

    Attributes:
        id: Unique id within its hook point
        func: The async handler function
        collections: Collection filter (empty means every collection)
        priority: Lower runs first
        order: Registration sequence, breaks priority ties
    """

    id: str
    func: HandlerFn
    collections: frozenset[str] = frozenset()
    priority: int = 0
    order: int = 0

    def applies_to(self, collection: str | None) -> bool:
        if not self.collections:
            return True
        return collection is not None and collection in self.collections


class HookChain:
    """Single pass of an event through one hook point.

    Usage:
        chain = HookChain("on_record_update", handlers, event, final=write)
        await chain.run()
        if chain.state is ChainState.HALTED:
            ...
    """

    def __init__(
        self,
        name: str,
        handlers: list[Handler],
        event: HookEvent,
        final: FinalFn | None = None,
    ):
        self.name = name
        self.handlers = list(handlers)
        self.event = event
        self.final = final
        self.state = ChainState.PENDING
        self.halted_by: str | None = None
        self.error: BaseException | None = None
        self._final_done = False

    @property
    def completed(self) -> bool:
        return self.state is ChainState.COMPLETED

    @property
    def halted(self) -> bool:
        return self.state is ChainState.HALTED

    async def run(self) -> "HookChain":
        """Run the chain.

        Raises:
            RuntimeError: If the chain already ran
            RecordKitError: Whatever a handler or the final action raised;
                other exceptions are wrapped in HookAbortedError
        """
        if self.state is not ChainState.PENDING:
            raise RuntimeError(f"Hook chain '{self.name}' already ran")
        self.state = ChainState.RUNNING

        try:
            await self._step(0)
        except BaseException as e:
            self.state = ChainState.FAILED
            self.error = e
            raise

        if self._final_done:
            self.state = ChainState.COMPLETED
        else:
            self.state = ChainState.HALTED
            logger.debug("Hook chain '%s' halted by handler '%s'", self.name, self.halted_by)
        return self

    async def _step(self, index: int) -> None:
        if index >= len(self.handlers):
            if self.final is not None:
                await self.final(self.event)
            self._final_done = True
            return

        handler = self.handlers[index]
        called = False

        async def continuation() -> None:
            nonlocal called
            if called:
                raise RuntimeError(
                    f"Handler '{handler.id}' called next() more than once in '{self.name}'"
                )
            called = True
            await self._step(index + 1)

        self.event._push(continuation)
        try:
            await handler.func(self.event)
        except (RecordKitError, RuntimeError, asyncio.CancelledError):
            raise
        except Exception as e:
            raise HookAbortedError(
                str(e) or type(e).__name__, {"handler": handler.id}
            ) from e
        finally:
            self.event._pop()

        if not called and self.halted_by is None:
            self.halted_by = handler.id
