from __future__ import annotations

from datetime import timedelta

import pytest

from challenge_messaging.application.repositories.outbox import OutboxRecord
from challenge_messaging.infrastructure.bus.serializer import deserialize_change, serialize_change
from challenge_messaging.workers.outbox_worker import _calc_backoff, process_batch
from tests.conftest import T0, FakeUoW

CHANNEL = "changes.test"


class FakePublisher:
    def __init__(self, fail_ids: set[int] | None = None) -> None:
        self.fail_ids = fail_ids or set()
        self.published: list[tuple[str, str, dict]] = []

    async def publish(self, channel: str, event_type: str, payload: dict) -> None:
        if payload.get("id") in self.fail_ids:
            raise ConnectionError("redis down")
        self.published.append((channel, event_type, payload))


def _record(record_id: int, attempts: int = 0) -> OutboxRecord:
    return OutboxRecord(
        id=record_id,
        event_type="INSERT",
        payload={"id": record_id, "table": "messages", "record": {}},
        attempts=attempts,
    )


def test_calc_backoff_doubles_and_caps():
    assert _calc_backoff(0, T0) == T0 + timedelta(seconds=5)
    assert _calc_backoff(2, T0) == T0 + timedelta(seconds=20)
    assert _calc_backoff(10, T0) == T0 + timedelta(seconds=300)


def test_envelope_format():
    raw = serialize_change("INSERT", {"table": "messages", "record": {"id": "x"}})

    assert deserialize_change(raw) == ("INSERT", {"table": "messages", "record": {"id": "x"}})


@pytest.mark.asyncio
async def test_process_batch_publishes_pending_records():
    uow = FakeUoW()
    uow.outbox._pending = [_record(1), _record(2)]
    publisher = FakePublisher()

    sent = await process_batch(uow, publisher, channel=CHANNEL, batch_size=10, max_attempts=3)

    assert sent == 2
    assert [p[0] for p in publisher.published] == [CHANNEL, CHANNEL]
    assert uow.outbox.sent == [1, 2]
    assert uow._committed is True


@pytest.mark.asyncio
async def test_process_batch_reschedules_failures_and_parks_exhausted():
    uow = FakeUoW()
    uow.outbox._pending = [_record(1), _record(2), _record(3, attempts=3)]
    publisher = FakePublisher(fail_ids={2})

    sent = await process_batch(uow, publisher, channel=CHANNEL, batch_size=10, max_attempts=3)

    assert sent == 1
    assert uow.outbox.sent == [1]
    assert [record_id for record_id, _ in uow.outbox.failed] == [2]
    assert uow.outbox.dead == [3]


@pytest.mark.asyncio
async def test_process_batch_empty_does_not_commit():
    uow = FakeUoW()

    sent = await process_batch(uow, FakePublisher(), channel=CHANNEL, batch_size=10, max_attempts=3)

    assert sent == 0
    assert uow._committed is False


@pytest.mark.parametrize("raw", ["[]", '{"event": "INSERT"}', '{"event": 1, "data": {}}'])
def test_malformed_envelope_is_rejected(raw):
    with pytest.raises(ValueError):
        deserialize_change(raw)
