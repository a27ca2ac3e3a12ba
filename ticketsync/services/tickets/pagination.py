"""Page request state machine for the ticket list."""

from __future__ import annotations

import enum

from ticketsync.services.tickets.query_service import Page


class PaginationState(enum.Enum):
    idle = "idle"
    loading = "loading"
    exhausted = "exhausted"


class PaginationController:
    """Tracks the current page and whether another one may be requested.

    idle -> loading -> idle, until a page reports ``has_more=False`` which
    parks the controller in ``exhausted`` until the next reset.
    """

    def __init__(self) -> None:
        self.page_number = 1
        self.state = PaginationState.idle

    @property
    def loading(self) -> bool:
        return self.state is PaginationState.loading

    @property
    def exhausted(self) -> bool:
        return self.state is PaginationState.exhausted

    def reset(self) -> int:
        self.page_number = 1
        self.state = PaginationState.loading
        return self.page_number

    def request_next(self) -> int | None:
        if self.state is not PaginationState.idle:
            return None
        self.page_number += 1
        self.state = PaginationState.loading
        return self.page_number

    def on_page(self, page: Page) -> None:
        if page.cancelled or page.page_number != self.page_number:
            return
        self.state = PaginationState.idle if page.has_more else PaginationState.exhausted

    def on_failure(self, page_number: int) -> None:
        """A failed load steps back so the next request retries the same page."""
        if page_number != self.page_number or self.state is not PaginationState.loading:
            return
        self.page_number = page_number - 1
        self.state = PaginationState.idle
