"""recordkit hook pipeline.

Provides extension points around record mutations and API operations:
- Model hooks: on_record_create/update/delete, on_record_validate,
  on_record_*_execute, on_record_after_*_success, on_record_after_*_error
- Request hooks: on_records_list_request, on_record_view/create/update/delete_request
- on_record_enrich: serialisation for external consumers
- Realtime hooks: on_realtime_subscribe_request, on_realtime_message_send

Usage:
    from recordkit.hooks import HookRegistry, RecordEvent

    hooks = HookRegistry()

    @hooks.on_record_create.handler("posts")
    async def default_status(e: RecordEvent):
        if not e.record.get("status"):
            e.record.set("status", "draft")
        await e.next()
"""

from recordkit.hooks.chain import ChainState, Handler, HookChain
from recordkit.hooks.enrich import enrich_record
from recordkit.hooks.registry import HOOK_POINTS, Hook, HookRegistry
from recordkit.hooks.types import (
    HookEvent,
    RealtimeMessageEvent,
    RealtimeSubscribeEvent,
    RecordEnrichEvent,
    RecordErrorEvent,
    RecordEvent,
    RecordRequestEvent,
    RecordsListRequestEvent,
)

__all__ = [
    "ChainState",
    "HOOK_POINTS",
    "Handler",
    "Hook",
    "HookChain",
    "HookEvent",
    "HookRegistry",
    "RealtimeMessageEvent",
    "RealtimeSubscribeEvent",
    "RecordEnrichEvent",
    "RecordErrorEvent",
    "RecordEvent",
    "RecordRequestEvent",
    "RecordsListRequestEvent",
    "enrich_record",
]
