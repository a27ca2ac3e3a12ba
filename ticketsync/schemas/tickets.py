from __future__ import annotations

import datetime as dt
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ticketsync.models.enums import TicketStatus


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str
    number: str
    profile_pic_url: str | None = None


class QueueRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str
    color: str | None = None


class TagRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str
    color: str | None = None


class TicketRead(BaseModel):
    """Ticket as seen by the list: identity plus display attributes."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    status: TicketStatus
    unread_messages: int = Field(default=0, ge=0)
    queue_id: int | None = None
    user_id: int | None = None
    contact_id: int | None = None
    last_message: str | None = None
    is_group: bool = False
    contact: ContactRead | None = None
    queue: QueueRead | None = None
    tags: list[TagRead] = Field(default_factory=list)
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class TicketListRequest(BaseModel):
    """Fetch request handed to the ticket data source."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    page_number: int = Field(default=1, ge=1)
    search_param: str | None = None
    status: TicketStatus | None = None
    show_all: bool = False
    queue_ids: list[int] = Field(default_factory=list)
    tags: list[int] = Field(default_factory=list)
    date: dt.date | None = None
    updated_at: dt.date | None = None
    with_unread_messages: bool = False


class TicketListResponse(BaseModel):
    tickets: list[TicketRead]
    count: int
    has_more: bool


class TicketPushEvent(BaseModel):
    """Raw event delivered on the ticket push feed."""

    action: Literal["update", "delete"]
    ticket: TicketRead | None = None
    ticket_id: int | None = None

    @model_validator(mode="after")
    def _validate_payload(self) -> TicketPushEvent:
        if self.action == "update" and self.ticket is None:
            raise ValueError("ticket is required for update events")
        if self.action == "delete" and self.ticket_id is None and self.ticket is not None:
            self.ticket_id = self.ticket.id
        return self
