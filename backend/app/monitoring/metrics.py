"""Metric definitions for the realtime coordinator."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the coordinator.",
    label_names=("topic", "direction", "action"),
)

realtime_dropped_events_total = registry.counter(
    "realtime_dropped_events_total",
    "Realtime events that could not be delivered or were rejected.",
    label_names=("reason",),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

presence_persist_errors_total = registry.counter(
    "presence_persist_errors_total",
    "Failed writes of user presence to the database.",
)
