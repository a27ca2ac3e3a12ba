"""Ticket list queries.

``TicketQuery`` is a composable query builder over ``Ticket``. The ownership
clause ("mine or pending") is held apart from the other filters so that the
search policy can either AND it with the search clause or replace it.

``SqlTicketSource`` turns a ``TicketListRequest`` into one page of tickets.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from datetime import UTC, date, datetime, time
from typing import Self
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from ticketsync.config import settings
from ticketsync.db import get_session
from ticketsync.logging import get_logger
from ticketsync.models.enums import TicketStatus
from ticketsync.models.tickets import Contact, Message, Ticket, TicketTag, User
from ticketsync.schemas.tickets import TicketListRequest, TicketListResponse, TicketRead
from ticketsync.services.tickets.errors import QueryError
from ticketsync.services.tickets.search import like_term, normalize_search

logger = get_logger(__name__)

SEARCH_NARROW = "narrow"
SEARCH_BROADEN = "broaden"
TAG_MATCH_ANY = "any"
TAG_MATCH_ALL = "all"


def day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """Start and end of a local calendar day, expressed in UTC."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, time.max, tzinfo=tz)
    return start.astimezone(UTC), end.astimezone(UTC)


class TicketQuery:
    """Fluent builder for ticket list queries.

    Usage:
        tickets = (
            TicketQuery(db)
            .owned_or_pending(user_id)
            .in_queues([1, 2])
            .by_status(TicketStatus.open)
            .newest_first()
            .paginate(limit=40, offset=0)
            .all()
        )
    """

    def __init__(self, db: Session):
        self.db = db
        self._query: Query = db.query(Ticket)
        self._scope = None
        self._ordered = False
        self._limit = 0
        self._offset = 0

    def _clone(self) -> Self:
        new = self.__class__.__new__(self.__class__)
        new.db = self.db
        new._query = self._query
        new._scope = self._scope
        new._ordered = self._ordered
        new._limit = self._limit
        new._offset = self._offset
        return new

    # -------------------------------------------------------------------------
    # Visibility
    # -------------------------------------------------------------------------

    def owned_or_pending(self, user_id: int) -> Self:
        clone = self._clone()
        clone._scope = or_(Ticket.user_id == user_id, Ticket.status == TicketStatus.pending)
        return clone

    def in_queues(self, queue_ids: Iterable[int]) -> Self:
        """Tickets in one of the queues, or in no queue at all."""
        clone = self._clone()
        ids = list(queue_ids)
        clone._query = clone._query.filter(or_(Ticket.queue_id.in_(ids), Ticket.queue_id.is_(None)))
        return clone

    # -------------------------------------------------------------------------
    # Filters
    # -------------------------------------------------------------------------

    def by_status(self, status: TicketStatus | None) -> Self:
        clone = self._clone()
        if status is not None:
            clone._query = clone._query.filter(Ticket.status == status)
        return clone

    def search(self, term: str | None, policy: str = SEARCH_NARROW) -> Self:
        """Match contact name, contact number or any message body.

        ``narrow`` keeps the ownership clause and ANDs the match with it.
        ``broaden`` puts the match in place of the ownership clause.
        """
        clone = self._clone()
        normalized = normalize_search(term)
        if not normalized:
            return clone
        pattern = like_term(normalized)
        message_match = (
            self.db.query(Message.id)
            .filter(Message.ticket_id == Ticket.id)
            .filter(Message.body.ilike(pattern, escape="\\"))
            .exists()
        )
        clause = or_(
            Contact.name.ilike(pattern, escape="\\"),
            Contact.number.ilike(pattern, escape="\\"),
            message_match,
        )
        clone._query = clone._query.join(Ticket.contact)
        if policy == SEARCH_BROADEN:
            clone._scope = clause
        else:
            clone._query = clone._query.filter(clause)
        return clone

    def created_on(self, day: date | None, tz_name: str) -> Self:
        clone = self._clone()
        if day is not None:
            start, end = day_bounds(day, tz_name)
            clone._query = clone._query.filter(Ticket.created_at.between(start, end))
        return clone

    def updated_on(self, day: date | None, tz_name: str) -> Self:
        clone = self._clone()
        if day is not None:
            start, end = day_bounds(day, tz_name)
            clone._query = clone._query.filter(Ticket.updated_at.between(start, end))
        return clone

    def unread_only(self) -> Self:
        clone = self._clone()
        clone._query = clone._query.filter(Ticket.unread_messages > 0)
        return clone

    def by_ids(self, ids: Iterable[int]) -> Self:
        """Restrict to the given ids. An empty set matches nothing."""
        clone = self._clone()
        clone._query = clone._query.filter(Ticket.id.in_(list(ids)))
        return clone

    # -------------------------------------------------------------------------
    # Ordering & pagination
    # -------------------------------------------------------------------------

    def newest_first(self) -> Self:
        clone = self._clone()
        clone._ordered = True
        return clone

    def paginate(self, limit: int, offset: int = 0) -> Self:
        clone = self._clone()
        clone._limit = max(limit, 0)
        clone._offset = max(offset, 0)
        return clone

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _filtered(self) -> Query:
        if self._scope is None:
            return self._query
        return self._query.filter(self._scope)

    def query(self) -> Query:
        query = self._filtered()
        if self._ordered:
            query = query.order_by(Ticket.updated_at.desc(), Ticket.id.desc())
        if self._limit:
            query = query.limit(self._limit)
        if self._offset:
            query = query.offset(self._offset)
        return query

    def all(self) -> list[Ticket]:
        return (
            self.query()
            .options(
                selectinload(Ticket.contact),
                selectinload(Ticket.queue),
                selectinload(Ticket.tags),
            )
            .all()
        )

    def count(self) -> int:
        return self._filtered().count()


def resolve_tag_ticket_ids(db: Session, tag_ids: Iterable[int], policy: str = TAG_MATCH_ANY) -> set[int]:
    """Ticket ids carrying the tags: any of them, or all of them."""
    tags = sorted(set(tag_ids))
    if not tags:
        return set()
    query = db.query(TicketTag.ticket_id).filter(TicketTag.tag_id.in_(tags))
    if policy == TAG_MATCH_ALL:
        query = query.group_by(TicketTag.ticket_id).having(func.count(func.distinct(TicketTag.tag_id)) == len(tags))
    else:
        query = query.distinct()
    return {row[0] for row in query.all()}


def operator_queue_ids(db: Session, user_id: int) -> list[int]:
    user = db.get(User, user_id)
    if user is None:
        raise QueryError("operator_not_found", f"User {user_id} not found", status_code=404)
    return [queue.id for queue in user.queues]


class SqlTicketSource:
    """Ticket data source backed by SQLAlchemy."""

    def __init__(
        self,
        session_factory: Callable[[], AbstractContextManager[Session]] = get_session,
        *,
        page_size: int | None = None,
        search_policy: str | None = None,
        tag_match_policy: str | None = None,
        timezone: str | None = None,
    ):
        self._session_factory = session_factory
        self.page_size = page_size or settings.ticket_page_size
        self.search_policy = search_policy or settings.search_policy
        self.tag_match_policy = tag_match_policy or settings.tag_match_policy
        self.timezone = timezone or settings.local_timezone

    def build_query(self, db: Session, request: TicketListRequest) -> TicketQuery:
        if request.with_unread_messages:
            query = (
                TicketQuery(db)
                .owned_or_pending(request.user_id)
                .in_queues(operator_queue_ids(db, request.user_id))
                .unread_only()
            )
        else:
            query = TicketQuery(db).in_queues(request.queue_ids)
            if not request.show_all:
                query = query.owned_or_pending(request.user_id)
            query = (
                query.by_status(request.status)
                .search(request.search_param, self.search_policy)
                .created_on(request.date, self.timezone)
                .updated_on(request.updated_at, self.timezone)
            )

        if request.tags:
            try:
                ticket_ids = resolve_tag_ticket_ids(db, request.tags, self.tag_match_policy)
            except SQLAlchemyError as exc:
                logger.warning("ticket_tag_resolution_failed tags=%s error=%s", request.tags, exc)
                raise QueryError("tag_resolution_failed", "Could not resolve ticket tags") from exc
            query = query.by_ids(ticket_ids)
        return query

    def list_tickets(self, request: TicketListRequest) -> TicketListResponse:
        offset = self.page_size * (request.page_number - 1)
        try:
            with self._session_factory() as db:
                query = self.build_query(db, request)
                count = query.count()
                rows = query.newest_first().paginate(limit=self.page_size, offset=offset).all()
                tickets = [TicketRead.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("ticket_query_failed page=%s error=%s", request.page_number, exc)
            raise QueryError("ticket_query_failed", "Ticket query failed") from exc

        return TicketListResponse(
            tickets=tickets,
            count=count,
            has_more=count > offset + len(tickets),
        )
