"""Realtime record change delivery over server-sent events."""

from recordkit.realtime.broker import (
    RealtimeBroker,
    RealtimeClient,
    Subscription,
    format_sse,
    parse_topic,
)
from recordkit.realtime.endpoints import create_realtime_router

__all__ = [
    "RealtimeBroker",
    "RealtimeClient",
    "Subscription",
    "create_realtime_router",
    "format_sse",
    "parse_topic",
]
