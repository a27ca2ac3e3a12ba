"""Publish ticket changes onto the push feed."""

from __future__ import annotations

import json
from typing import Any

from redis.exceptions import RedisError

from ticketsync.config import settings
from ticketsync.logging import get_logger
from ticketsync.models.enums import TicketStatus
from ticketsync.schemas.tickets import TicketRead
from ticketsync.services.tickets.channel import GENERAL_CHANNEL

logger = get_logger(__name__)


def _channels(status: TicketStatus | None, prefix: str) -> list[str]:
    keys = [GENERAL_CHANNEL]
    if status is not None:
        keys.insert(0, status.value)
    return [f"{prefix}{key}" for key in keys]


async def _publish(redis_client: Any, channels: list[str], payload: dict) -> int:
    data = json.dumps(payload, default=str)
    delivered = 0
    for channel in channels:
        try:
            delivered += await redis_client.publish(channel, data)
        except RedisError as exc:
            logger.warning("ticket_publish_error channel=%s error=%s", channel, exc)
    return delivered


async def publish_ticket_update(redis_client: Any, ticket: TicketRead, *, prefix: str | None = None) -> int:
    """Send an update event to the ticket's status channel and ``general``."""
    channels = _channels(ticket.status, settings.ticket_channel_prefix if prefix is None else prefix)
    payload = {"action": "update", "ticket": ticket.model_dump(mode="json")}
    delivered = await _publish(redis_client, channels, payload)
    logger.debug("ticket_update_published ticket_id=%s receivers=%s", ticket.id, delivered)
    return delivered


async def publish_ticket_delete(
    redis_client: Any,
    ticket_id: int,
    *,
    status: TicketStatus | None = None,
    prefix: str | None = None,
) -> int:
    channels = _channels(status, settings.ticket_channel_prefix if prefix is None else prefix)
    payload = {"action": "delete", "ticket_id": ticket_id}
    delivered = await _publish(redis_client, channels, payload)
    logger.debug("ticket_delete_published ticket_id=%s receivers=%s", ticket_id, delivered)
    return delivered
