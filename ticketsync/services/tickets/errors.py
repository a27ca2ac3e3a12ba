"""Error taxonomy for the ticket list services."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException


@dataclass(frozen=True)
class TicketListError(Exception):
    code: str
    detail: str
    status_code: int = 400
    retryable: bool = False

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.detail)


class QueryError(TicketListError):
    def __init__(self, code: str, detail: str, status_code: int = 500):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=True)


class QueryValidationError(TicketListError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400, retryable=False)


class ChannelError(TicketListError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=503, retryable=True)


class Cancelled(Exception):
    """Raised inside a fetch whose token was superseded. Never leaves QueryService."""


def as_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, TicketListError):
        return exc.to_http_exception()
    if isinstance(exc, HTTPException):
        return exc
    return HTTPException(status_code=500, detail=str(exc) or "Ticket list error")
