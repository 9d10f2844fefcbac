"""Metric definitions for realtime chat traffic."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime messages processed by the websocket managers.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

chat_messages_total = registry.counter(
    "chat_messages_total",
    "Number of chat messages stored, by chat type.",
    label_names=("chat_type",),
)

chat_handler_errors_total = registry.counter(
    "chat_handler_errors_total",
    "Unexpected failures raised while handling chat events.",
    label_names=("event",),
)

chat_connection_rejections_total = registry.counter(
    "chat_connection_rejections_total",
    "Websocket handshakes refused by the connection authenticator.",
    label_names=("reason",),
)
