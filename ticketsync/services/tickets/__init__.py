"""Ticket list synchronization: paged fetches, push updates and list merging."""

from ticketsync.services.tickets.cancellation import CancellationToken, FetchContext
from ticketsync.services.tickets.channel import ChannelScope, UpdateChannel
from ticketsync.services.tickets.errors import QueryError, QueryValidationError, TicketListError
from ticketsync.services.tickets.filters import FilterState, Operator
from ticketsync.services.tickets.pagination import PaginationController, PaginationState
from ticketsync.services.tickets.query_service import Page, QueryService
from ticketsync.services.tickets.reducer import RESET, Removal, merge
from ticketsync.services.tickets.session import TicketListSession

__all__ = [
    "RESET",
    "CancellationToken",
    "ChannelScope",
    "FetchContext",
    "FilterState",
    "Operator",
    "Page",
    "PaginationController",
    "PaginationState",
    "QueryError",
    "QueryService",
    "QueryValidationError",
    "Removal",
    "TicketListError",
    "TicketListSession",
    "UpdateChannel",
    "merge",
]
