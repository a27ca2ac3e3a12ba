"""Filter snapshot driving the ticket list."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from ticketsync.models.enums import TicketStatus, UserProfile
from ticketsync.schemas.tickets import TicketListRequest
from ticketsync.services.tickets.search import normalize_search


def _ids(values: Iterable[int] | None) -> frozenset[int]:
    return frozenset(int(value) for value in values or ())


@dataclass(frozen=True)
class Operator:
    """The operator a ticket list is built for."""

    id: int
    profile: UserProfile = UserProfile.user
    queue_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user) -> Operator:
        return cls(
            id=user.id,
            profile=user.profile or UserProfile.user,
            queue_ids=_ids(queue.id for queue in user.queues),
        )


@dataclass(frozen=True)
class FilterState:
    status: TicketStatus | None = None
    search_param: str | None = None
    show_all: bool = False
    queue_ids: frozenset[int] = field(default_factory=frozenset)
    tag_ids: frozenset[int] = field(default_factory=frozenset)
    date: date | None = None
    updated_at: date | None = None
    with_unread_messages: bool = False

    @classmethod
    def build(
        cls,
        *,
        status: TicketStatus | str | None = None,
        search_param: str | None = None,
        show_all: bool = False,
        queue_ids: Iterable[int] | None = None,
        tag_ids: Iterable[int] | None = None,
        date: date | None = None,
        updated_at: date | None = None,
        with_unread_messages: bool = False,
    ) -> FilterState:
        """Normalize loose UI input into a snapshot."""
        if isinstance(status, str):
            status = TicketStatus(status) if status else None
        return cls(
            status=status,
            search_param=normalize_search(search_param),
            show_all=bool(show_all),
            queue_ids=_ids(queue_ids),
            tag_ids=_ids(tag_ids),
            date=date,
            updated_at=updated_at,
            with_unread_messages=bool(with_unread_messages),
        )

    def to_request(self, page_number: int, operator: Operator) -> TicketListRequest:
        return TicketListRequest(
            user_id=operator.id,
            page_number=page_number,
            search_param=self.search_param,
            status=self.status,
            show_all=self.show_all,
            queue_ids=sorted(self.queue_ids),
            tags=sorted(self.tag_ids),
            date=self.date,
            updated_at=self.updated_at,
            with_unread_messages=self.with_unread_messages,
        )
