"""Tests for the ticket push channel."""

import json

import pytest

from ticketsync.models.enums import TicketStatus
from ticketsync.schemas.tickets import TicketRead
from ticketsync.services.tickets.channel import ChannelScope, UpdateChannel, is_in_scope
from ticketsync.services.tickets.filters import FilterState, Operator
from ticketsync.services.tickets.reducer import RESET, Removal


def _ticket(ticket_id, **overrides):
    return TicketRead(id=ticket_id, status=overrides.pop("status", TicketStatus.open), **overrides)


def _update(ticket):
    return json.dumps({"action": "update", "ticket": ticket.model_dump(mode="json")})


def _scope(**overrides):
    values = {"status": None, "show_all": False, "user_id": 1, "queue_ids": frozenset({10})}
    values.update(overrides)
    return ChannelScope(**values)


@pytest.fixture()
def batches():
    return []


@pytest.fixture()
def channel(batches, fake_redis):
    return UpdateChannel(
        batches.append,
        redis_factory=lambda: fake_redis,
        channel_prefix="tickets:",
        reconnect_delay=0.01,
    )


class TestScope:
    def test_scope_from_filter(self):
        filter_state = FilterState.build(status="pending", show_all=True, queue_ids=[2, 3])
        scope = ChannelScope.for_filter(filter_state, Operator(id=5))
        assert scope == ChannelScope(
            status=TicketStatus.pending,
            show_all=True,
            user_id=5,
            queue_ids=frozenset({2, 3}),
        )
        assert scope.channel_key == "pending"

    def test_unfiltered_status_uses_general_channel(self):
        assert _scope().channel_key == "general"

    @pytest.mark.parametrize(
        ("ticket", "scope", "expected"),
        [
            (_ticket(1), _scope(), True),
            (_ticket(1, user_id=1, queue_id=10), _scope(), True),
            (_ticket(1, user_id=2), _scope(), False),
            (_ticket(1, user_id=2), _scope(show_all=True), True),
            (_ticket(1, queue_id=11), _scope(), False),
            (_ticket(1, user_id=2, queue_id=11), _scope(show_all=True), False),
        ],
    )
    def test_membership_predicate(self, ticket, scope, expected):
        assert is_in_scope(ticket, scope) is expected


class TestTranslation:
    @pytest.mark.asyncio
    async def test_update_in_scope_emits_single_ticket_batch(self, channel, batches):
        await channel.subscribe(_scope())
        ticket = _ticket(7, user_id=1, queue_id=10, unread_messages=2)
        batch = channel.handle_message(_update(ticket))
        assert batch == [ticket]
        assert batches == [[ticket]]
        await channel.close()

    @pytest.mark.asyncio
    async def test_update_out_of_scope_is_dropped(self, channel, batches):
        await channel.subscribe(_scope())
        assert channel.handle_message(_update(_ticket(7, user_id=99))) is None
        assert channel.handle_message(_update(_ticket(8, queue_id=55))) is None
        assert batches == []
        await channel.close()

    def test_update_without_subscription_is_dropped(self, channel, batches):
        assert channel.handle_message(_update(_ticket(7))) is None
        assert batches == []

    def test_delete_resets_by_default(self, channel, batches):
        assert channel.handle_message(json.dumps({"action": "delete", "ticket_id": 7})) is RESET
        assert channel.handle_message({"action": "delete"}) is RESET
        assert batches == [RESET, RESET]

    def test_delete_with_remove_policy_removes_single_ticket(self, batches, fake_redis):
        channel = UpdateChannel(batches.append, redis_factory=lambda: fake_redis, delete_policy="remove")
        assert channel.handle_message(json.dumps({"action": "delete", "ticket_id": 7})) == Removal(7)
        ticket = _ticket(8).model_dump(mode="json")
        assert channel.handle_message({"action": "delete", "ticket": ticket}) == Removal(8)
        assert channel.handle_message({"action": "delete"}) is None
        assert batches == [Removal(7), Removal(8)]

    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            b"\xff\xfe",
            json.dumps({"action": "explode"}),
            json.dumps({"action": "update"}),
            json.dumps({"action": "update", "ticket": {"id": "abc"}}),
            json.dumps(["update"]),
            None,
        ],
    )
    def test_malformed_events_are_dropped(self, channel, batches, payload):
        assert channel.handle_message(payload) is None
        assert batches == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_subscribes_to_status_channel(self, channel, fake_redis):
        assert await channel.subscribe(_scope(status=TicketStatus.open)) is True
        assert fake_redis.subscriptions == ["tickets:open"]
        assert channel.connected
        await channel.close()

    @pytest.mark.asyncio
    async def test_same_scope_does_not_resubscribe(self, channel, fake_redis):
        await channel.subscribe(_scope())
        assert await channel.subscribe(_scope()) is False
        assert fake_redis.subscriptions == ["tickets:general"]
        await channel.close()

    @pytest.mark.asyncio
    async def test_scope_change_tears_down_old_subscription(self, channel, fake_redis):
        await channel.subscribe(_scope())
        first = fake_redis.pubsubs[0]
        await channel.subscribe(_scope(queue_ids=frozenset({10, 11})))
        await channel.subscribe(_scope(status=TicketStatus.pending, queue_ids=frozenset({10, 11})))
        assert first.closed
        assert fake_redis.subscriptions == ["tickets:general", "tickets:general", "tickets:pending"]
        assert len(fake_redis.active_pubsubs()) == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_published_events_reach_the_list(self, channel, batches, fake_redis, eventually):
        await channel.subscribe(_scope())
        ticket = _ticket(3, queue_id=10)
        receivers = await fake_redis.publish("tickets:general", _update(ticket))
        assert receivers == 1
        await eventually(lambda: batches == [[ticket]])
        await channel.close()

    @pytest.mark.asyncio
    async def test_reconnects_after_disconnect(self, channel, batches, fake_redis, eventually):
        await channel.subscribe(_scope())
        fake_redis.disconnect_next = True
        await eventually(lambda: len(fake_redis.subscriptions) == 2)
        assert fake_redis.pubsubs[0].closed
        assert channel.connected
        assert channel.last_error is None

        ticket = _ticket(4)
        await fake_redis.publish("tickets:general", _update(ticket))
        await eventually(lambda: batches == [[ticket]])
        await channel.close()

    @pytest.mark.asyncio
    async def test_subscribe_while_redis_is_down_retries(self, channel, fake_redis, eventually):
        fake_redis.fail_subscribe = True
        await channel.subscribe(_scope())
        assert not channel.connected
        assert channel.last_error is not None
        assert channel.last_error.code == "subscribe_failed"
        assert channel.last_error.retryable
        assert channel.last_error.to_http_exception().status_code == 503

        fake_redis.fail_subscribe = False
        await eventually(lambda: channel.connected)
        assert fake_redis.subscriptions == ["tickets:general"]
        assert channel.last_error is None
        await channel.close()

    @pytest.mark.asyncio
    async def test_close_releases_subscription(self, channel, fake_redis):
        await channel.subscribe(_scope())
        await channel.close()
        assert fake_redis.pubsubs[0].closed
        assert fake_redis.closed
        assert channel.scope is None
        assert not channel.connected
