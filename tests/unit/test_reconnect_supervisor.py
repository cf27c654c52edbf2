from __future__ import annotations

import asyncio
import uuid

import pytest

from challenge_messaging.application.dto.feed import FeedTarget
from challenge_messaging.domain.value_objects.enums import ConnectionStatus
from challenge_messaging.services.reconnect_supervisor import (
    ReconnectSupervisor,
    backoff_delay_ms,
)
from tests.conftest import (
    BlockingSleep,
    FakeChangeFeed,
    FakeChangeFeedClient,
    RecordingSleep,
    drain,
    insert_event,
    make_message,
)


@pytest.fixture
def conversation_id():
    return uuid.uuid4()


@pytest.fixture
def target(me, conversation_id):
    return FeedTarget.for_inbox(me, [conversation_id])


def _supervisor(feed, sleep=None, events=None, statuses=None, **kwargs) -> ReconnectSupervisor:
    return ReconnectSupervisor(
        feed,
        on_event=events.append if events is not None else (lambda _e: None),
        on_status=statuses.append if statuses is not None else None,
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


def test_backoff_doubles_and_caps():
    assert backoff_delay_ms(0) == 1000
    assert backoff_delay_ms(1) == 2000
    assert backoff_delay_ms(2) == 4000
    assert backoff_delay_ms(3) == 8000
    assert backoff_delay_ms(4) == 10000
    assert backoff_delay_ms(9) == 10000
    assert backoff_delay_ms(2, base_ms=100, max_ms=300) == 300


@pytest.mark.asyncio
async def test_set_target_opens_one_subscription(feed: FakeChangeFeed, target):
    statuses: list[ConnectionStatus] = []
    sup = _supervisor(feed, statuses=statuses)

    await sup.set_target(target)

    assert len(feed.clients) == 1
    assert feed.latest.filters == target.filters
    assert sup.status is ConnectionStatus.CONNECTING
    assert sup.handle is not None and sup.handle.client is feed.latest
    assert statuses == [ConnectionStatus.CONNECTING]


@pytest.mark.asyncio
async def test_same_target_is_a_noop(feed, target):
    sup = _supervisor(feed)

    await sup.set_target(target)
    await sup.set_target(FeedTarget(name=target.name, filters=target.filters))

    assert len(feed.clients) == 1
    assert feed.latest.live


@pytest.mark.asyncio
async def test_retry_delays_grow_then_reset_after_subscribe(feed, target):
    sleep = RecordingSleep()
    sup = _supervisor(feed, sleep=sleep)
    await sup.set_target(target)

    feed.latest.emit_status(ConnectionStatus.ERROR)
    await drain()
    feed.latest.emit_status(ConnectionStatus.TIMED_OUT)
    await drain()
    feed.latest.emit_status(ConnectionStatus.SUBSCRIBED)
    assert sup.attempts == 0
    feed.latest.emit_status(ConnectionStatus.ERROR)
    await drain()

    assert sleep.delays_ms == [2000, 4000, 2000]
    assert len(feed.clients) == 4
    assert len(feed.live_clients) == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(feed, target):
    sleep = RecordingSleep()
    statuses: list[ConnectionStatus] = []
    sup = _supervisor(feed, sleep=sleep, statuses=statuses)
    await sup.set_target(target)

    for _ in range(5):
        feed.latest.emit_status(ConnectionStatus.ERROR)
        await drain()
    assert sup.status is ConnectionStatus.CONNECTING

    feed.latest.emit_status(ConnectionStatus.ERROR)
    await drain()

    assert sup.status is ConnectionStatus.FAILED
    assert statuses[-1] is ConnectionStatus.FAILED
    assert sleep.delays_ms == [2000, 4000, 8000, 10000, 10000]
    assert len(feed.clients) == 6
    assert not sup.retry_pending

    # Terminal until an explicit reconnect.
    feed.latest.emit_status(ConnectionStatus.SUBSCRIBED)
    await drain()
    assert sup.status is ConnectionStatus.FAILED
    assert len(feed.clients) == 6


@pytest.mark.asyncio
async def test_reconnect_leaves_failed_with_fresh_attempts(feed, target):
    sup = _supervisor(feed, max_attempts=1)
    await sup.set_target(target)
    feed.latest.emit_status(ConnectionStatus.ERROR)
    await drain()
    feed.latest.emit_status(ConnectionStatus.ERROR)
    await drain()
    assert sup.status is ConnectionStatus.FAILED
    failed_client = feed.latest

    await sup.reconnect()

    assert sup.status is ConnectionStatus.CONNECTING
    assert sup.attempts == 0
    assert failed_client.closed
    assert feed.live_clients == [feed.latest]


@pytest.mark.asyncio
async def test_reconnect_without_target_does_nothing(feed):
    sup = _supervisor(feed)

    await sup.reconnect()

    assert feed.clients == []
    assert sup.status is ConnectionStatus.IDLE


@pytest.mark.asyncio
async def test_switching_target_keeps_a_single_live_subscription(feed, me, target):
    events = []
    sup = _supervisor(feed, events=events)
    other_conversation = uuid.uuid4()
    other = FeedTarget.for_inbox(me, [other_conversation])

    await sup.set_target(target)
    first = feed.latest
    await sup.set_target(other)

    assert first.closed
    assert feed.live_clients == [feed.latest]
    assert sup.target == other

    # Anything the superseded client still delivers is ignored.
    first.emit_event(insert_event(make_message(conversation_id=other_conversation, sender_id=uuid.uuid4())))
    first.emit_status(ConnectionStatus.SUBSCRIBED)
    assert events == []
    assert sup.status is ConnectionStatus.CONNECTING


@pytest.mark.asyncio
async def test_stale_open_completion_is_discarded(feed, me, target):
    sup = _supervisor(feed)
    gate = feed.block_next_open()
    pending = asyncio.create_task(sup.set_target(target))
    await drain()
    slow = feed.latest

    other = FeedTarget.for_inbox(me, [uuid.uuid4()])
    await sup.set_target(other)
    gate.set()
    await pending

    assert slow.closed
    assert feed.live_clients == [feed.latest]
    assert sup.handle is not None and sup.handle.client is feed.latest
    assert sup.target == other


@pytest.mark.asyncio
async def test_dispose_cancels_pending_retry(feed, target):
    sleep = BlockingSleep()
    sup = _supervisor(feed, sleep=sleep)
    await sup.set_target(target)

    feed.latest.emit_status(ConnectionStatus.ERROR)
    await drain()
    assert sup.retry_pending
    assert sleep.delays_ms == [2000]

    await sup.dispose()
    await drain()

    assert sleep.cancelled == 1
    assert not sup.retry_pending
    assert sup.status is ConnectionStatus.IDLE
    assert sup.target is None
    assert len(feed.clients) == 1
    assert feed.live_clients == []


@pytest.mark.asyncio
async def test_set_target_none_disposes(feed, target):
    sup = _supervisor(feed)
    await sup.set_target(target)

    await sup.set_target(None)

    assert sup.status is ConnectionStatus.IDLE
    assert feed.live_clients == []


@pytest.mark.asyncio
async def test_forwards_only_matching_events(feed, target, conversation_id):
    events = []
    sup = _supervisor(feed, events=events)
    await sup.set_target(target)

    wanted = make_message(conversation_id=conversation_id, sender_id=uuid.uuid4())
    foreign = make_message(conversation_id=uuid.uuid4(), sender_id=uuid.uuid4())
    feed.latest.emit_event(insert_event(wanted))
    feed.latest.emit_event(insert_event(foreign))

    assert [e.record["id"] for e in events] == [str(wanted.id)]


class _ExplodingClient(FakeChangeFeedClient):
    async def open(self, filters, handlers):
        await super().open(filters, handlers)
        raise RuntimeError("socket refused")


@pytest.mark.asyncio
async def test_open_raising_counts_as_error(target):
    clients: list[FakeChangeFeedClient] = []

    def factory():
        client = _ExplodingClient() if not clients else FakeChangeFeedClient()
        clients.append(client)
        return client

    sleep = RecordingSleep()
    sup = ReconnectSupervisor(factory, on_event=lambda _e: None, sleep=sleep)

    await sup.set_target(target)
    await drain()

    assert sleep.delays_ms == [2000]
    assert len(clients) == 2
    assert clients[0].closed
    assert sup.status is ConnectionStatus.CONNECTING
