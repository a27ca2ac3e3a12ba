"""Push feed subscription for the ticket list.

The feed is Redis pub/sub, one channel per status (or ``general`` when the
list is not filtered by status). ``UpdateChannel`` owns the subscription and
turns each raw event into a reducer input for the list it serves.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from redis.exceptions import RedisError

from ticketsync.config import settings
from ticketsync.logging import get_logger
from ticketsync.models.enums import TicketStatus
from ticketsync.schemas.tickets import TicketPushEvent, TicketRead
from ticketsync.services.tickets.errors import ChannelError
from ticketsync.services.tickets.filters import FilterState, Operator
from ticketsync.services.tickets.observability import CHANNEL_RECONNECTS, PUSH_EVENTS
from ticketsync.services.tickets.reducer import RESET, Batch, Removal

logger = get_logger(__name__)

GENERAL_CHANNEL = "general"
DELETE_RESET = "reset"
DELETE_REMOVE = "remove"


def _default_redis_factory():
    import redis.asyncio as aioredis

    return aioredis.from_url(settings.redis_url, decode_responses=True)


def _handle_task_exception(task: asyncio.Task) -> None:
    try:
        exc = task.exception()
        if exc:
            logger.error("ticket_channel_task_error error=%s", exc, exc_info=exc)
    except asyncio.CancelledError:
        pass


@dataclass(frozen=True)
class ChannelScope:
    """The part of the filter that decides which push events reach the list."""

    status: TicketStatus | None
    show_all: bool
    user_id: int
    queue_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def for_filter(cls, filter_state: FilterState, operator: Operator) -> ChannelScope:
        return cls(
            status=filter_state.status,
            show_all=filter_state.show_all,
            user_id=operator.id,
            queue_ids=filter_state.queue_ids,
        )

    @property
    def channel_key(self) -> str:
        return self.status.value if self.status else GENERAL_CHANNEL


def is_in_scope(ticket: TicketRead, scope: ChannelScope) -> bool:
    owner_ok = ticket.user_id is None or ticket.user_id == scope.user_id or scope.show_all
    queue_ok = ticket.queue_id is None or ticket.queue_id in scope.queue_ids
    return owner_ok and queue_ok


class UpdateChannel:
    """Owns the push subscription for one ticket list.

    ``on_batch`` receives reducer inputs: a one-ticket batch for an in-scope
    update, and ``RESET`` (or a ``Removal`` with ``delete_policy="remove"``)
    for a delete.
    """

    def __init__(
        self,
        on_batch: Callable[[Batch], Any],
        *,
        redis_factory: Callable[[], Any] | None = None,
        channel_prefix: str | None = None,
        delete_policy: str | None = None,
        reconnect_delay: float | None = None,
    ) -> None:
        self._on_batch = on_batch
        self._redis_factory = redis_factory or _default_redis_factory
        self.channel_prefix = channel_prefix if channel_prefix is not None else settings.ticket_channel_prefix
        self.delete_policy = delete_policy or settings.delete_policy
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.channel_reconnect_delay_seconds
        )
        self._redis_client: Any | None = None
        self._pubsub: Any | None = None
        self._listener_task: asyncio.Task | None = None
        self._scope: ChannelScope | None = None
        self._running = False
        self.last_error: ChannelError | None = None

    @property
    def scope(self) -> ChannelScope | None:
        return self._scope

    @property
    def connected(self) -> bool:
        return self._pubsub is not None

    def channel_name(self, scope: ChannelScope) -> str:
        return f"{self.channel_prefix}{scope.channel_key}"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def subscribe(self, scope: ChannelScope) -> bool:
        """Point the subscription at ``scope``. Returns False when nothing changed."""
        if scope == self._scope and self._listener_task is not None:
            return False
        await self._teardown()
        self._scope = scope
        self._running = True
        try:
            await self._open()
        except (RedisError, OSError) as exc:
            logger.warning("ticket_channel_subscribe_failed channel=%s error=%s", self.channel_name(scope), exc)
            self.last_error = ChannelError("subscribe_failed", f"Could not subscribe to {self.channel_name(scope)}")
        self._listener_task = asyncio.create_task(self._listen())
        self._listener_task.add_done_callback(_handle_task_exception)
        return True

    async def close(self) -> None:
        """Release the subscription and the Redis client."""
        await self._teardown()
        self._scope = None
        if self._redis_client is not None:
            client, self._redis_client = self._redis_client, None
            with contextlib.suppress(RedisError, OSError):
                await client.aclose()
        logger.info("ticket_channel_closed")

    async def _open(self) -> None:
        if self._redis_client is None:
            self._redis_client = self._redis_factory()
        pubsub = self._redis_client.pubsub()
        channel = self.channel_name(self._scope)
        await pubsub.subscribe(channel)
        self._pubsub = pubsub
        self.last_error = None
        logger.info("ticket_channel_subscribed channel=%s", channel)

    async def _drop_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        except (RedisError, OSError) as exc:
            logger.debug("ticket_channel_unsubscribe_error error=%s", exc)

    async def _teardown(self) -> None:
        self._running = False
        task, self._listener_task = self._listener_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._drop_pubsub()

    async def _listen(self) -> None:
        while self._running:
            if self._pubsub is None:
                await asyncio.sleep(self.reconnect_delay)
                if not self._running:
                    return
                try:
                    await self._open()
                    CHANNEL_RECONNECTS.inc()
                except (RedisError, OSError) as exc:
                    logger.warning("ticket_channel_reconnect_failed error=%s", exc)
                    self.last_error = ChannelError("reconnect_failed", "Ticket feed unavailable")
                    continue
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisError, OSError) as exc:
                logger.warning("ticket_channel_disconnected error=%s", exc)
                self.last_error = ChannelError("disconnected", "Ticket feed disconnected")
                await self._drop_pubsub()
                continue
            if message and message.get("type") == "message":
                try:
                    self.handle_message(message.get("data"))
                except Exception:
                    logger.exception("ticket_channel_dispatch_error")

    # -------------------------------------------------------------------------
    # Event translation
    # -------------------------------------------------------------------------

    def translate(self, event: TicketPushEvent) -> Batch | None:
        """Reducer input for an event, or None when the list should ignore it."""
        if event.action == "update":
            if self._scope is None or not is_in_scope(event.ticket, self._scope):
                return None
            return [event.ticket]
        if self.delete_policy == DELETE_REMOVE:
            if event.ticket_id is None:
                return None
            return Removal(event.ticket_id)
        return RESET

    def handle_message(self, data: str | bytes | dict | None) -> Batch | None:
        """Parse one raw feed payload and forward the resulting batch."""
        try:
            payload = json.loads(data) if isinstance(data, str | bytes) else data
            event = TicketPushEvent.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            PUSH_EVENTS.labels(action="unknown", outcome="malformed").inc()
            logger.warning("ticket_push_event_malformed error=%s", exc)
            return None

        batch = self.translate(event)
        if batch is None:
            PUSH_EVENTS.labels(action=event.action, outcome="dropped").inc()
            logger.debug("ticket_push_event_dropped action=%s ticket_id=%s", event.action, event.ticket_id)
            return None
        PUSH_EVENTS.labels(action=event.action, outcome="applied").inc()
        self._on_batch(batch)
        return batch
