import json
from contextlib import nullcontext
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ticketsync.db import get_db
from ticketsync.models.enums import TicketStatus
from ticketsync.schemas.tickets import TicketListRequest, TicketListResponse
from ticketsync.services.tickets.errors import QueryValidationError, TicketListError, as_http_exception
from ticketsync.services.tickets.queries import SqlTicketSource

router = APIRouter()


def _parse_ids(values: list[str] | None, name: str) -> list[int]:
    """Accept repeated values (``?tags=1&tags=2``) or JSON arrays (``?tags=[1,2]``)."""
    ids: list[int] = []
    for raw in values or []:
        raw = raw.strip()
        if not raw:
            continue
        try:
            parsed = json.loads(raw)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc
        items = parsed if isinstance(parsed, list) else [parsed]
        try:
            ids.extend(int(item) for item in items)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc
    return ids


def get_ticket_source(db: Session = Depends(get_db)) -> SqlTicketSource:
    return SqlTicketSource(lambda: nullcontext(db))


@router.get("/tickets", response_model=TicketListResponse, tags=["tickets"])
def list_tickets(
    user_id: int = Query(alias="userId"),
    page_number: int = Query(default=1, alias="pageNumber"),
    search_param: str | None = Query(default=None, alias="searchParam"),
    status: TicketStatus | None = None,
    show_all: bool = Query(default=False, alias="showAll"),
    queue_ids: list[str] | None = Query(default=None, alias="queueIds"),
    tags: list[str] | None = Query(default=None),
    date: date | None = None,
    updated_at: date | None = Query(default=None, alias="updatedAt"),
    with_unread_messages: bool = Query(default=False, alias="withUnreadMessages"),
    source: SqlTicketSource = Depends(get_ticket_source),
):
    if page_number < 1:
        raise as_http_exception(QueryValidationError("invalid_page", "pageNumber must be >= 1"))
    request = TicketListRequest(
        user_id=user_id,
        page_number=page_number,
        search_param=search_param,
        status=status,
        show_all=show_all,
        queue_ids=_parse_ids(queue_ids, "queueIds"),
        tags=_parse_ids(tags, "tags"),
        date=date,
        updated_at=updated_at,
        with_unread_messages=with_unread_messages,
    )
    try:
        return source.list_tickets(request)
    except TicketListError as exc:
        raise as_http_exception(exc) from exc
