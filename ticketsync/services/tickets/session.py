"""Live ticket list for one operator.

``TicketListSession`` is the surface a UI talks to. It ties together the
filter snapshot, paged fetches, the push channel and the reducer. Everything
that touches the list runs on the event loop between awaits, so every merge is
applied whole; the fetch tokens keep a superseded page from ever landing.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from ticketsync.logging import get_logger
from ticketsync.models.enums import UserProfile
from ticketsync.schemas.tickets import TicketRead
from ticketsync.services.tickets.cancellation import FetchContext
from ticketsync.services.tickets.channel import ChannelScope, UpdateChannel
from ticketsync.services.tickets.errors import TicketListError
from ticketsync.services.tickets.filters import FilterState, Operator
from ticketsync.services.tickets.pagination import PaginationController
from ticketsync.services.tickets.query_service import Page, QueryService
from ticketsync.services.tickets.reducer import EMPTY, RESET, Batch, ListState, merge

logger = get_logger(__name__)

ListListener = Callable[[ListState], Any]


class TicketListSession:
    def __init__(
        self,
        operator: Operator,
        *,
        query_service: QueryService | None = None,
        redis_factory: Callable[[], Any] | None = None,
        delete_policy: str | None = None,
    ) -> None:
        self.operator = operator
        self.query_service = query_service or QueryService()
        self.channel = UpdateChannel(self.apply, redis_factory=redis_factory, delete_policy=delete_policy)
        self.pagination = PaginationController()
        self.fetch_context = FetchContext(name=f"operator:{operator.id}")
        self._filter: FilterState | None = None
        self._state: ListState = EMPTY
        self._listeners: list[ListListener] = []

    @property
    def filter_state(self) -> FilterState | None:
        return self._filter

    @property
    def count(self) -> int:
        return len(self._state)

    def get_list_state(self) -> ListState:
        return self._state

    def on_list_changed(self, callback: ListListener) -> Callable[[], None]:
        """Register a listener; the returned callable removes it."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def apply(self, batch: Batch) -> None:
        """Single entry point for every change to the list."""
        next_state = merge(self._state, batch)
        if next_state == self._state:
            return
        self._state = next_state
        for listener in list(self._listeners):
            try:
                listener(next_state)
            except Exception:
                logger.exception("ticket_list_listener_error operator_id=%s", self.operator.id)

    async def on_filter_change(self, filter_state: FilterState) -> Page | None:
        """Reset the list for a new filter and load its first page.

        Returns None when the filter is equal to the active one, or when an
        even newer filter arrived while this one was being set up.
        """
        if filter_state == self._filter:
            return None
        # Supersede any fetch of the previous filter before the first await.
        self.fetch_context.cancel()
        self._filter = filter_state
        self.apply(RESET)
        page_number = self.pagination.reset()
        logger.info(
            "ticket_list_filter_changed operator_id=%s status=%s show_all=%s",
            self.operator.id,
            filter_state.status.value if filter_state.status else None,
            filter_state.show_all,
        )
        await self.channel.subscribe(ChannelScope.for_filter(filter_state, self.operator))
        if self._filter is not filter_state:
            return None
        return await self._load(filter_state, page_number)

    async def on_scroll_near_end(self) -> Page | None:
        """Load the next page unless one is loading or the filter is exhausted."""
        if self._filter is None:
            return None
        page_number = self.pagination.request_next()
        if page_number is None:
            return None
        return await self._load(self._filter, page_number)

    async def close(self) -> None:
        self.fetch_context.cancel()
        await self.channel.close()
        self._listeners.clear()

    async def _load(self, filter_state: FilterState, page_number: int) -> Page:
        token = self.fetch_context.issue()
        try:
            page = await self.query_service.fetch(filter_state, page_number, operator=self.operator, token=token)
        except TicketListError:
            if self.fetch_context.is_current(token):
                self.pagination.on_failure(page_number)
            raise
        if page.cancelled or not self.fetch_context.is_current(token):
            return Page.empty(page_number, cancelled=True)
        self.pagination.on_page(page)
        self.apply(self._visible(page.tickets))
        return page

    def _visible(self, tickets: Iterable[TicketRead]) -> list[TicketRead]:
        """Operators with the ``user`` profile only see their own queues or none."""
        if self.operator.profile is not UserProfile.user:
            return list(tickets)
        allowed = self.operator.queue_ids
        return [ticket for ticket in tickets if ticket.queue_id is None or ticket.queue_id in allowed]
