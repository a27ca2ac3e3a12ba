import asyncio
import itertools
import uuid

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticketsync.db import Base
from ticketsync.models.enums import TicketStatus, UserProfile
from ticketsync.models.tickets import Contact, Message, Queue, Tag, Ticket, TicketTag, User, UserQueue


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


def _unique_email() -> str:
    return f"operator-{uuid.uuid4().hex}@example.com"


@pytest.fixture()
def make_user(db_session):
    def _make(name="Operator", profile=UserProfile.user, queues=()):
        user = User(name=name, email=_unique_email(), profile=profile)
        db_session.add(user)
        db_session.flush()
        for queue in queues:
            db_session.add(UserQueue(user_id=user.id, queue_id=queue.id))
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_queue(db_session):
    def _make(name):
        queue = Queue(name=name)
        db_session.add(queue)
        db_session.commit()
        return queue

    return _make


@pytest.fixture()
def make_tag(db_session):
    def _make(name):
        tag = Tag(name=name)
        db_session.add(tag)
        db_session.commit()
        return tag

    return _make


@pytest.fixture()
def make_ticket(db_session):
    counter = itertools.count(1)

    def _make(
        *,
        status=TicketStatus.open,
        user=None,
        queue=None,
        unread=0,
        contact_name=None,
        contact_number=None,
        messages=(),
        tags=(),
        created_at=None,
        updated_at=None,
    ):
        n = next(counter)
        contact = Contact(
            name=contact_name or f"Contact {n}",
            number=contact_number or f"4470000{n:05d}",
        )
        ticket = Ticket(
            contact=contact,
            status=status,
            user_id=user.id if user else None,
            queue_id=queue.id if queue else None,
            unread_messages=unread,
        )
        if created_at is not None:
            ticket.created_at = created_at
        if updated_at is not None:
            ticket.updated_at = updated_at
        db_session.add(ticket)
        db_session.flush()
        for body in messages:
            db_session.add(Message(ticket_id=ticket.id, contact_id=contact.id, body=body))
        for tag in tags:
            db_session.add(TicketTag(ticket_id=ticket.id, tag_id=tag.id))
        db_session.commit()
        return ticket

    return _make


# -------------------------------------------------------------------------
# Redis pub/sub fakes
# -------------------------------------------------------------------------


class FakePubSub:
    def __init__(self, redis):
        self.redis = redis
        self.channels: set[str] = set()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels):
        if self.redis.fail_subscribe:
            raise RedisConnectionError("redis unavailable")
        if self.redis.subscribe_gate is not None:
            self.redis.subscribes_waiting += 1
            await self.redis.subscribe_gate.wait()
        self.channels.update(channels)
        self.redis.subscriptions.extend(channels)

    async def unsubscribe(self, *channels):
        self.channels.clear()

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        if self.redis.disconnect_next:
            self.redis.disconnect_next = False
            raise RedisConnectionError("connection lost")
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self):
        self.pubsubs: list[FakePubSub] = []
        self.subscriptions: list[str] = []
        self.published: list[tuple[str, str]] = []
        self.fail_subscribe = False
        self.disconnect_next = False
        self.closed = False
        # When set, subscribe() waits on it like a slow network round trip.
        self.subscribe_gate: asyncio.Event | None = None
        self.subscribes_waiting = 0

    def pubsub(self):
        pubsub = FakePubSub(self)
        self.pubsubs.append(pubsub)
        return pubsub

    def active_pubsubs(self):
        return [pubsub for pubsub in self.pubsubs if not pubsub.closed and pubsub.channels]

    async def publish(self, channel, data):
        self.published.append((channel, data))
        receivers = 0
        for pubsub in self.active_pubsubs():
            if channel in pubsub.channels:
                pubsub.queue.put_nowait({"type": "message", "channel": channel, "data": data})
                receivers += 1
        return receivers

    async def aclose(self):
        self.closed = True


@pytest.fixture()
def fake_redis():
    return FakeRedis()


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture()
def eventually():
    return wait_until
