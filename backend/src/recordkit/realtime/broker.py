"""Realtime broker: per-client subscriptions and rule-checked fan-out.

Each connected client gets its own bounded asyncio.Queue of SSE messages.
After a record mutation commits, every subscriber whose topic matches is
checked against the collection rule with its own identity: the list rule
for "<collection>/*" topics, the view rule for "<collection>/<id>" topics.
A client-supplied filter can only narrow what passes that check. A record
that stops being visible produces no message at all.
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from urllib.parse import parse_qs

from recordkit.core.outcomes import InvalidRuleError, Outcome, RecordKitError
from recordkit.core.record import Record, generate_id
from recordkit.core.request import RequestContextTag, RequestInfo
from recordkit.hooks.enrich import enrich_record
from recordkit.hooks.registry import HookRegistry
from recordkit.hooks.types import RealtimeMessageEvent, RealtimeSubscribeEvent, RecordEvent
from recordkit.metadata.loader import CollectionLoader
from recordkit.rules.enforcement import RuleEnforcer

logger = logging.getLogger(__name__)

CONNECT_EVENT = "connect"

AUTH_MISMATCH_MESSAGE = "The current and the previous request authorization don't match."


@dataclass(frozen=True)
class Subscription:
    """A parsed subscription topic.

    Attributes:
        topic: The topic as sent by the client (used as the SSE event name)
        collection: Collection name
        record_id: Record id, or "*" for every record
        filter: Optional client filter expression
    """

    topic: str
    collection: str
    record_id: str = "*"
    filter: str | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.record_id == "*"

    def matches(self, record: Record) -> bool:
        if record.collection.name != self.collection:
            return False
        return self.is_wildcard or self.record_id == record.id


@dataclass
class RealtimeClient:
    """A connected SSE client."""

    id: str
    auth: Record | None = None
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    subscriptions: dict[str, Subscription] = field(default_factory=dict)

    def same_identity(self, auth: Record | None) -> bool:
        if self.auth is None or auth is None:
            return self.auth is None and auth is None
        return (self.auth.collection.name, self.auth.id) == (auth.collection.name, auth.id)


def format_sse(event: str, data: dict, id: str | None = None) -> str:
    """Format an SSE message."""
    prefix = f"id:{id}\n" if id else ""
    return f"{prefix}event:{event}\ndata:{json.dumps(data)}\n\n"


def parse_topic(topic: str) -> Subscription:
    """Parse "posts/*" or "posts/abc?options={...}" into a Subscription.

    Raises:
        ValueError: If the topic is malformed
    """
    path, _, query = topic.partition("?")
    collection, sep, record_id = path.partition("/")
    if not collection or not sep or not record_id:
        raise ValueError(f"Invalid subscription topic '{topic}'")

    filter_expr = None
    if query:
        options_raw = parse_qs(query).get("options")
        if options_raw:
            try:
                options = json.loads(options_raw[0])
            except ValueError as e:
                raise ValueError(f"Invalid options for topic '{topic}': {e}") from e
            if not isinstance(options, dict):
                raise ValueError(f"Invalid options for topic '{topic}'")
            filter_expr = options.get("filter") or options.get("query", {}).get("filter")

    return Subscription(topic=topic, collection=collection, record_id=record_id, filter=filter_expr)


class RealtimeBroker:
    """Manages realtime clients and delivers record change messages.

    Usage:
        broker = RealtimeBroker(loader, enforcer, hooks)
        broker.bind()          # before hooks.freeze()
        client = broker.connect(auth)
        await broker.subscribe(client.id, ["posts/*"], RequestInfo(auth=auth))
    """

    def __init__(
        self,
        collections: CollectionLoader,
        enforcer: RuleEnforcer,
        hooks: HookRegistry,
        queue_size: int = 256,
    ):
        self.collections = collections
        self.enforcer = enforcer
        self.hooks = hooks
        self.queue_size = queue_size
        self._clients: dict[str, RealtimeClient] = {}

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def get_client(self, client_id: str) -> RealtimeClient | None:
        return self._clients.get(client_id)

    def bind(self) -> None:
        """Deliver committed cascade-mode mutations to subscribers."""
        for action in ("create", "update", "delete"):
            hook = self.hooks.get(f"on_record_after_{action}_success")
            hook.bind(self._on_success, id=f"realtime:{action}")

    async def _on_success(self, e: RecordEvent) -> None:
        # Committed writes are delivered even when a later handler fails
        try:
            await e.next()
        finally:
            await self.broadcast(e.action, e.record)

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def connect(self, auth: Record | None = None) -> RealtimeClient:
        """Register a new client and queue its connect message."""
        client = RealtimeClient(
            id=generate_id(), auth=auth, queue=asyncio.Queue(maxsize=self.queue_size)
        )
        self._clients[client.id] = client
        client.queue.put_nowait(format_sse(CONNECT_EVENT, {"clientId": client.id}, client.id))
        logger.debug("Realtime client %s connected", client.id)
        return client

    def disconnect(self, client_id: str) -> None:
        client = self._clients.pop(client_id, None)
        if client is None:
            return
        try:
            client.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass  # the stream stops once the client is gone from the registry
        logger.debug("Realtime client %s disconnected", client_id)

    async def stream(self, client_id: str) -> AsyncGenerator[str, None]:
        """Yield SSE messages for a client until it disconnects."""
        client = self._clients.get(client_id)
        if client is None:
            return
        try:
            while client_id in self._clients or not client.queue.empty():
                message = await client.queue.get()
                if message is None:
                    break
                yield message
        finally:
            self.disconnect(client_id)

    def shutdown(self) -> None:
        """Disconnect all connected clients."""
        for client_id in list(self._clients):
            self.disconnect(client_id)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(
        self, client_id: str, subscriptions: list[str], info: RequestInfo
    ) -> Outcome:
        """Replace a client's subscriptions.

        Only the identity that opened the connection may change them.
        """
        client = self._clients.get(client_id)
        if client is None:
            return Outcome.not_found()
        if not client.same_identity(info.auth):
            return Outcome.forbidden(AUTH_MISMATCH_MESSAGE)

        event = RealtimeSubscribeEvent(client=client, subscriptions=list(subscriptions), info=info)

        async def apply(e: RealtimeSubscribeEvent) -> None:
            parsed: dict[str, Subscription] = {}
            for topic in e.subscriptions:
                try:
                    subscription = parse_topic(topic)
                except ValueError as err:
                    raise InvalidRuleError(str(err)) from err
                if subscription.filter:
                    collection = self.collections.get_collection(subscription.collection)
                    if collection is not None:
                        self.enforcer.compile(collection, subscription.filter)
                parsed[topic] = subscription
            e.client.subscriptions = parsed

        try:
            await self.hooks.on_realtime_subscribe_request.trigger(event, apply)
        except RecordKitError as e:
            return Outcome.from_exception(e)
        return Outcome.success(status=204)

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    async def broadcast(self, action: str, record: Record) -> int:
        """Deliver a change to every subscriber allowed to see it.

        Returns:
            Number of messages queued
        """
        delivered = 0
        for client in list(self._clients.values()):
            info = RequestInfo(auth=client.auth, context=RequestContextTag.REALTIME)
            for subscription in list(client.subscriptions.values()):
                if not subscription.matches(record):
                    continue
                if not self._can_receive(subscription, record, info):
                    continue
                if await self._send(client, subscription, action, record, info):
                    delivered += 1
        return delivered

    def _can_receive(self, subscription: Subscription, record: Record, info: RequestInfo) -> bool:
        collection = record.collection
        action = "list" if subscription.is_wildcard else "view"
        if not self.enforcer.can_access(collection, action, record, info):
            return False
        if subscription.filter:
            try:
                return self.enforcer.evaluate(collection, subscription.filter, record, info)
            except InvalidRuleError as e:
                logger.debug("Realtime filter '%s' rejected: %s", subscription.filter, e)
                return False
        return True

    async def _send(
        self,
        client: RealtimeClient,
        subscription: Subscription,
        action: str,
        record: Record,
        info: RequestInfo,
    ) -> bool:
        data = {"action": action, "record": await enrich_record(self.hooks, record, info)}
        event = RealtimeMessageEvent(
            client=client, topic=subscription.topic, action=action, data=data
        )
        queued = False

        async def enqueue(e: RealtimeMessageEvent) -> None:
            nonlocal queued
            try:
                e.client.queue.put_nowait(format_sse(e.topic, e.data))
                queued = True
            except asyncio.QueueFull:
                logger.warning("Realtime client %s queue full - disconnecting", e.client.id)
                self.disconnect(e.client.id)

        await self.hooks.on_realtime_message_send.trigger(event, enqueue)
        return queued
