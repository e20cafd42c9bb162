"""Record serialisation through the on_record_enrich hook."""

from typing import Any

from recordkit.core.record import Record
from recordkit.core.request import RequestInfo
from recordkit.hooks.registry import HookRegistry
from recordkit.hooks.types import RecordEnrichEvent


async def enrich_record(
    hooks: HookRegistry, record: Record, info: RequestInfo
) -> dict[str, Any]:
    """Serialise a record for one consumer.

    Schema-hidden fields are removed for everyone but superusers. Handlers
    run on a clone, so hiding, unhiding or adding fields never touches the
    record itself.
    """
    hidden = set() if info.is_superuser else record.hidden_fields()
    event = RecordEnrichEvent(record=record.clone(), info=info, hidden=hidden)
    await hooks.on_record_enrich.trigger(event)
    return event.to_dict()
