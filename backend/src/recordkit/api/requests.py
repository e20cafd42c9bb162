"""Request-level orchestrator.

Framework-free implementation of the five record operations. Each method
runs its request hook with a final action that checks the collection rule
and performs the operation, then serialises records through
on_record_enrich. Errors raised inside chains come back as Outcomes.

Rule failures map as follows:
- list: success with no rows (the rule is applied as a row filter)
- create: INPUT_REJECTED
- view, update, delete: NOT_FOUND, identical to a missing record
- locked rule, non-superuser: FORBIDDEN
"""

from __future__ import annotations

import math
from typing import Any

from recordkit.core.outcomes import Outcome, RecordKitError
from recordkit.core.record import Record
from recordkit.core.request import RequestInfo
from recordkit.hooks.enrich import enrich_record
from recordkit.hooks.registry import HookRegistry
from recordkit.hooks.types import RecordRequestEvent, RecordsListRequestEvent
from recordkit.metadata.loader import CollectionLoader
from recordkit.metadata.models import Collection
from recordkit.records.service import RecordService
from recordkit.rules.enforcement import RuleEnforcer

DEFAULT_PER_PAGE = 30
MAX_PER_PAGE = 500

# Fields clients never set directly
PROTECTED_FIELDS = ("created", "updated")


def parse_sort(sort: str | None, collection: Collection) -> list[tuple[str, bool]]:
    """Parse "-created,title" into [("created", True), ("title", False)].

    Raises:
        ValueError: If a field is unknown
    """
    if not sort:
        return []
    result = []
    for part in sort.split(","):
        part = part.strip()
        if not part:
            continue
        descending = part.startswith("-")
        name = part.lstrip("+-")
        field_def = collection.get_field(name)
        if field_def is None or field_def.hidden:
            raise ValueError(f"Invalid sort field '{name}'")
        result.append((name, descending))
    return result


class RecordsApi:
    """The record operations behind the HTTP routes.

    Usage:
        api = RecordsApi(loader, records, enforcer, hooks)
        outcome = await api.view("posts", "abc123", RequestInfo(auth=user))
        if outcome.ok:
            return outcome.value
    """

    def __init__(
        self,
        collections: CollectionLoader,
        records: RecordService,
        enforcer: RuleEnforcer,
        hooks: HookRegistry,
    ):
        self.collections = collections
        self.records = records
        self.enforcer = enforcer
        self.hooks = hooks

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def list(
        self,
        collection_name: str,
        info: RequestInfo,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
        sort: str | None = None,
        filter: str | None = None,
    ) -> Outcome:
        """List records visible under the list rule, narrowed by a client filter."""
        collection = self.collections.get_collection(collection_name)
        if collection is None:
            return Outcome.not_found()

        row_filter = self.enforcer.list_filter(collection, info, filter)
        if row_filter.denied:
            return row_filter.outcome

        try:
            order = parse_sort(sort, collection)
        except ValueError as e:
            return Outcome.input_rejected(str(e))

        page = max(page, 1)
        per_page = min(max(per_page, 1), MAX_PER_PAGE)
        event = RecordsListRequestEvent(
            collection=collection, info=info, page=page, per_page=per_page
        )

        async def fetch(e: RecordsListRequestEvent) -> None:
            where, params = row_filter.where()
            offset = (e.page - 1) * e.per_page
            if row_filter.needs_python:
                candidates = self.records.query(collection.name, where, params, sort=order)
                matched = [r for r in candidates if row_filter.matches(r)]
                e.total_items = len(matched)
                e.records = matched[offset:offset + e.per_page]
            else:
                e.total_items = self.records.count(collection.name, where, params)
                e.records = self.records.query(
                    collection.name, where, params, sort=order,
                    limit=e.per_page, offset=offset,
                )

        try:
            chain = await self.hooks.on_records_list_request.trigger(event, fetch)
            if chain.halted:
                return Outcome.success(status=204)
            items = [await self.enrich(r, info) for r in event.records]
        except RecordKitError as e:
            return Outcome.from_exception(e)

        return Outcome.success({
            "page": event.page,
            "perPage": event.per_page,
            "totalItems": event.total_items,
            "totalPages": math.ceil(event.total_items / event.per_page) if event.total_items else 0,
            "items": items,
        })

    async def view(self, collection_name: str, id: str, info: RequestInfo) -> Outcome:
        collection = self.collections.get_collection(collection_name)
        if collection is None:
            return Outcome.not_found()
        record = self.records.find_by_id(collection.name, id)
        if record is None:
            return Outcome.not_found()

        decision = self.enforcer.check(collection, "view", record, info)
        if not decision.ok:
            return decision

        event = RecordRequestEvent(collection=collection, record=record, info=info, action="view")
        try:
            chain = await self.hooks.on_record_view_request.trigger(event)
            if chain.halted:
                return Outcome.success(status=204)
            return Outcome.success(await self.enrich(event.record, info))
        except RecordKitError as e:
            return Outcome.from_exception(e)

    async def create(self, collection_name: str, info: RequestInfo) -> Outcome:
        collection = self.collections.get_collection(collection_name)
        if collection is None:
            return Outcome.not_found()

        record = Record(collection)
        record.load(self._writable_body(collection, info, creating=True))
        event = RecordRequestEvent(
            collection=collection, record=record, info=info, action="create"
        )
        return await self._mutate(event, "create", self.hooks.on_record_create_request, None)

    async def update(self, collection_name: str, id: str, info: RequestInfo) -> Outcome:
        collection = self.collections.get_collection(collection_name)
        if collection is None:
            return Outcome.not_found()
        stored = self.records.find_by_id(collection.name, id)
        if stored is None:
            return Outcome.not_found()

        record = stored.clone()
        record.load(self._writable_body(collection, info, creating=False))
        event = RecordRequestEvent(
            collection=collection, record=record, info=info, action="update"
        )
        return await self._mutate(event, "update", self.hooks.on_record_update_request, stored)

    async def delete(self, collection_name: str, id: str, info: RequestInfo) -> Outcome:
        collection = self.collections.get_collection(collection_name)
        if collection is None:
            return Outcome.not_found()
        stored = self.records.find_by_id(collection.name, id)
        if stored is None:
            return Outcome.not_found()

        event = RecordRequestEvent(
            collection=collection, record=stored, info=info, action="delete"
        )
        return await self._mutate(event, "delete", self.hooks.on_record_delete_request, stored)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _mutate(
        self,
        event: RecordRequestEvent,
        action: str,
        hook: Any,
        stored: Record | None,
    ) -> Outcome:
        """Run a request hook whose final action checks the rule and mutates."""
        result: list[Outcome] = []

        async def perform(e: RecordRequestEvent) -> None:
            # Update and delete rules see the stored record, create sees the new one
            subject = stored if stored is not None else e.record
            decision = self.enforcer.check(e.collection, action, subject, e.info)
            if not decision.ok:
                result.append(decision)
                return
            if action == "delete":
                await self.records.delete(e.record)
                result.append(Outcome.success(status=204))
            else:
                await self.records.save(e.record)
                result.append(Outcome.success(await self.enrich(e.record, e.info)))

        try:
            chain = await hook.trigger(event, perform)
        except RecordKitError as e:
            return Outcome.from_exception(e)

        if chain.halted or not result:
            return Outcome.success(status=204)
        return result[0]

    def _writable_body(
        self, collection: Collection, info: RequestInfo, creating: bool
    ) -> dict[str, Any]:
        body = {k: v for k, v in info.body.items() if k not in PROTECTED_FIELDS}
        if not creating:
            body.pop("id", None)
        if collection.is_auth and not info.is_superuser:
            body.pop("verified", None)
        return body

    async def enrich(self, record: Record, info: RequestInfo) -> dict[str, Any]:
        """Serialise a record for the requesting identity."""
        return await enrich_record(self.hooks, record, info)
