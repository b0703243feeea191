"""Metric definitions for the realtime hub."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime frames processed by the hub.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of live websocket connections handled locally.",
    label_names=("scope",),
)

realtime_online_users = registry.gauge(
    "realtime_online_users",
    "Number of distinct users with at least one live connection.",
)

realtime_subscriptions = registry.gauge(
    "realtime_group_subscriptions",
    "Number of connection-to-group subscriptions by group kind.",
    label_names=("kind",),
)

realtime_action_errors_total = registry.counter(
    "realtime_action_errors_total",
    "Hub commands rejected with an Error event.",
    label_names=("action", "kind"),
)

notifications_total = registry.counter(
    "notifications_published_total",
    "Domain notifications pushed to course or user groups.",
    label_names=("kind",),
)

chat_messages_total = registry.counter(
    "chat_messages_total",
    "Chat message mutations committed to the store.",
    label_names=("action",),
)
