import enum


class TicketStatus(enum.Enum):
    open = "open"
    pending = "pending"
    closed = "closed"


class UserProfile(enum.Enum):
    admin = "admin"
    user = "user"
