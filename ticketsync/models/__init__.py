from ticketsync.models.enums import TicketStatus, UserProfile
from ticketsync.models.tickets import Contact, Message, Queue, Tag, Ticket, TicketTag, User, UserQueue

__all__ = [
    "Contact",
    "Message",
    "Queue",
    "Tag",
    "Ticket",
    "TicketStatus",
    "TicketTag",
    "User",
    "UserProfile",
    "UserQueue",
]
