"""Paged ticket fetches with supersede-on-issue cancellation."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Protocol

from ticketsync.logging import get_logger
from ticketsync.schemas.tickets import TicketListRequest, TicketListResponse, TicketRead
from ticketsync.services.tickets.cancellation import CancellationToken
from ticketsync.services.tickets.errors import Cancelled, QueryError, QueryValidationError
from ticketsync.services.tickets.filters import FilterState, Operator
from ticketsync.services.tickets.observability import TICKET_FETCH_TIME, TICKET_FETCHES
from ticketsync.services.tickets.queries import SqlTicketSource

logger = get_logger(__name__)


class TicketSource(Protocol):
    def list_tickets(self, request: TicketListRequest) -> TicketListResponse: ...


@dataclass(frozen=True)
class Page:
    page_number: int
    tickets: tuple[TicketRead, ...] = field(default_factory=tuple)
    total_count: int = 0
    has_more: bool = False
    cancelled: bool = False

    @classmethod
    def empty(cls, page_number: int, *, cancelled: bool = False) -> Page:
        return cls(page_number=page_number, cancelled=cancelled)


class QueryService:
    """Fetches filtered ticket pages.

    The blocking data-source call runs in a worker thread. The caller's token
    is checked before the call starts and again once it returns; a token that
    was superseded in between turns the result into an empty cancelled page.
    """

    def __init__(self, source: TicketSource | None = None):
        self.source = source or SqlTicketSource()

    async def fetch(
        self,
        filter_state: FilterState,
        page_number: int,
        *,
        operator: Operator,
        token: CancellationToken,
    ) -> Page:
        if page_number < 1:
            raise QueryValidationError("invalid_page", f"Page number must be >= 1, got {page_number}")

        request = filter_state.to_request(page_number, operator)
        started = time.monotonic()
        try:
            token.raise_if_cancelled()
            response = await asyncio.to_thread(self.source.list_tickets, request)
            token.raise_if_cancelled()
        except Cancelled:
            TICKET_FETCHES.labels(outcome="cancelled").inc()
            logger.info("ticket_fetch_cancelled page=%s token=%s", page_number, token.sequence)
            return Page.empty(page_number, cancelled=True)
        except QueryError as exc:
            if token.cancelled:
                TICKET_FETCHES.labels(outcome="cancelled").inc()
                logger.info("ticket_fetch_cancelled page=%s token=%s error=%s", page_number, token.sequence, exc.code)
                return Page.empty(page_number, cancelled=True)
            TICKET_FETCHES.labels(outcome="error").inc()
            raise
        finally:
            TICKET_FETCH_TIME.observe(time.monotonic() - started)

        TICKET_FETCHES.labels(outcome="ok").inc()
        logger.debug(
            "ticket_fetch_completed page=%s count=%s returned=%s has_more=%s",
            page_number,
            response.count,
            len(response.tickets),
            response.has_more,
        )
        return Page(
            page_number=page_number,
            tickets=tuple(response.tickets),
            total_count=response.count,
            has_more=response.has_more,
        )
