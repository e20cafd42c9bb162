"""Hook event types for recordkit.

Defines the per-invocation objects passed to hook handlers:
- RecordEvent: model hooks around a record mutation
- RecordErrorEvent: model hooks after a failed mutation
- RecordRequestEvent / RecordsListRequestEvent: request hooks around an API operation
- RecordEnrichEvent: serialisation of a record for an external consumer
- RealtimeSubscribeEvent / RealtimeMessageEvent: realtime fan-out

Every event carries the continuation: a handler advances the chain with
``await e.next()``. An event lives for one pass through one operation and
is never shared between operations.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from recordkit.core.record import Record
from recordkit.core.request import RequestInfo
from recordkit.metadata.models import Collection

if TYPE_CHECKING:
    from recordkit.records.service import RecordService

Continuation = Callable[[], Awaitable[None]]


@dataclass
class HookEvent:
    """Base class for hook events."""

    _continuations: list[Continuation] = field(
        default_factory=list, init=False, repr=False, compare=False
    )

    @property
    def collection_name(self) -> str | None:
        """Collection used to select collection-filtered handlers."""
        return None

    async def next(self) -> None:
        """Continue with the next handler, or the chain's final action.

        Raises:
            RuntimeError: If called outside a running chain, or twice by the
                same handler
        """
        if not self._continuations:
            raise RuntimeError("next() called outside of a running hook chain")
        await self._continuations[-1]()

    def _push(self, continuation: Continuation) -> None:
        self._continuations.append(continuation)

    def _pop(self) -> None:
        self._continuations.pop()


@dataclass
class RecordEvent(HookEvent):
    """Model hook event.

    Attributes:
        record: The in-flight record (mutable until the storage write)
        action: "create", "update" or "delete"
        records: Service used for nested mutations (cascade or direct)
    """

    record: Record = None  # type: ignore[assignment]
    action: str = ""
    records: "RecordService | None" = None

    @property
    def collection(self) -> Collection:
        return self.record.collection

    @property
    def collection_name(self) -> str | None:
        return self.record.collection.name


@dataclass
class RecordErrorEvent(RecordEvent):
    """Model hook event for the failure phase.

    Attributes:
        error: The exception that failed the mutation
    """

    error: BaseException | None = None


@dataclass
class RecordRequestEvent(HookEvent):
    """Request hook event for view, create, update and delete.

    Attributes:
        collection: Target collection
        record: The loaded or new record (None until resolved)
        info: The request context
        action: "view", "create", "update" or "delete"
    """

    collection: Collection = None  # type: ignore[assignment]
    record: Record | None = None
    info: RequestInfo = field(default_factory=RequestInfo)
    action: str = ""

    @property
    def collection_name(self) -> str | None:
        return self.collection.name


@dataclass
class RecordsListRequestEvent(HookEvent):
    """Request hook event for list.

    Attributes:
        records: The page of records (populated by the final action)
        page: 1-based page number
        per_page: Page size
        total_items: Number of matching records across all pages
    """

    collection: Collection = None  # type: ignore[assignment]
    info: RequestInfo = field(default_factory=RequestInfo)
    records: list[Record] = field(default_factory=list)
    page: int = 1
    per_page: int = 30
    total_items: int = 0

    @property
    def collection_name(self) -> str | None:
        return self.collection.name


@dataclass
class RecordEnrichEvent(HookEvent):
    """Serialisation of one record for one consumer.

    Operates on a clone, so nothing here reaches persisted state.

    Example:
        async def hide_email(e: RecordEnrichEvent):
            if e.info.auth_id != e.record.id:
                e.hide("email")
            e.set_extra("wordCount", len(e.record.get("body").split()))
            await e.next()
    """

    record: Record = None  # type: ignore[assignment]
    info: RequestInfo = field(default_factory=RequestInfo)
    hidden: set[str] = field(default_factory=set)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def collection_name(self) -> str | None:
        return self.record.collection.name

    def hide(self, *fields: str) -> None:
        self.hidden.update(fields)

    def unhide(self, *fields: str) -> None:
        self.hidden.difference_update(fields)

    def set_extra(self, name: str, value: Any) -> None:
        self.extra[name] = value

    def to_dict(self) -> dict[str, Any]:
        data = self.record.public_dict(hidden=self.hidden)
        data.update(self.extra)
        return data


@dataclass
class RealtimeSubscribeEvent(HookEvent):
    """A client replacing its subscriptions.

    Attributes:
        client: The connected realtime client
        subscriptions: Requested topics (handlers may edit the list)
        info: Request context of the subscribe call
    """

    client: Any = None
    subscriptions: list[str] = field(default_factory=list)
    info: RequestInfo = field(default_factory=RequestInfo)


@dataclass
class RealtimeMessageEvent(HookEvent):
    """A message about to be queued for one client.

    Attributes:
        client: The receiving client
        topic: The matched subscription topic
        action: "create", "update" or "delete"
        data: Serialised payload (handlers may edit it)
    """

    client: Any = None
    topic: str = ""
    action: str = ""
    data: dict[str, Any] = field(default_factory=dict)
