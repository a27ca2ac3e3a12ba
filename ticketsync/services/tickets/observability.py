"""Prometheus metrics for the ticket list."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

TICKET_FETCHES = Counter(
    "ticket_list_fetches_total",
    "Ticket page fetches by outcome",
    ["outcome"],  # outcome: ok, cancelled, error
)

TICKET_FETCH_TIME = Histogram(
    "ticket_list_fetch_seconds",
    "Time spent fetching a ticket page",
)

PUSH_EVENTS = Counter(
    "ticket_list_push_events_total",
    "Ticket push events received",
    ["action", "outcome"],  # outcome: applied, dropped, malformed
)

CHANNEL_RECONNECTS = Counter(
    "ticket_list_channel_reconnects_total",
    "Push channel resubscriptions after a disconnect",
)
