"""Pure merge of ticket batches into the ordered ticket list.

The list is a tuple of ``TicketRead`` with unique ids. ``merge`` never mutates
its inputs and has no state of its own.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from ticketsync.schemas.tickets import TicketRead

ListState = tuple[TicketRead, ...]


class _Reset:
    __slots__ = ()

    def __repr__(self) -> str:
        return "RESET"


RESET: Final = _Reset()


@dataclass(frozen=True)
class Removal:
    ticket_id: int


Batch = Sequence[TicketRead] | _Reset | Removal

EMPTY: ListState = ()


def merge(current: ListState, batch: Batch) -> ListState:
    """Apply one batch to the list and return the next list.

    Per ticket, in batch order:
    - a known id is replaced in place, then moved to the front when it has
      unread messages;
    - an unknown id is appended at the end.
    """
    if batch is RESET:
        return EMPTY
    if isinstance(batch, Removal):
        return tuple(ticket for ticket in current if ticket.id != batch.ticket_id)

    tickets = list(current)
    for incoming in batch:
        index = next((i for i, ticket in enumerate(tickets) if ticket.id == incoming.id), None)
        if index is None:
            tickets.append(incoming)
            continue
        tickets[index] = incoming
        if incoming.unread_messages > 0:
            tickets.insert(0, tickets.pop(index))
    return tuple(tickets)


def ticket_ids(state: ListState) -> list[int]:
    return [ticket.id for ticket in state]
