"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator
from uuid import UUID

import pytest

from challenge_messaging.application.dto.events import (
    MESSAGES_TABLE,
    ChangeEvent,
    message_to_record,
)
from challenge_messaging.application.dto.feed import ChangeFilter
from challenge_messaging.application.dto.principal import Principal
from challenge_messaging.application.ports.change_feed import FeedHandlers
from challenge_messaging.application.repositories.outbox import OutboxRecord
from challenge_messaging.domain.entities.membership import ConversationMember
from challenge_messaging.domain.entities.message import Message
from challenge_messaging.domain.value_objects.enums import ChangeType, ConnectionStatus

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class StorageDown(RuntimeError):
    pass


@pytest.fixture
def me() -> UUID:
    return uuid.uuid4()


@pytest.fixture
def peer() -> UUID:
    return uuid.uuid4()


@pytest.fixture
def principal(me: UUID) -> Principal:
    return Principal(user_id=me, roles=[])


def make_message(
    *,
    conversation_id: UUID,
    sender_id: UUID,
    receiver_id: UUID | None = None,
    content: str | None = "hello",
    created_at: datetime | None = None,
    message_id: UUID | None = None,
) -> Message:
    return Message(
        id=message_id or uuid.uuid4(),
        conversation_id=conversation_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        challenge_id=None,
        created_at=created_at or T0,
    )


def insert_event(message: Message) -> ChangeEvent:
    return ChangeEvent(
        table=MESSAGES_TABLE,
        type=ChangeType.INSERT,
        record=message_to_record(message),
        commit_timestamp=message.created_at,
    )


@dataclass
class FakeClock:
    current: datetime = T0

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


@dataclass
class FakeMembershipReader:
    _members: dict[tuple[UUID, UUID], ConversationMember] = field(default_factory=dict)
    fail: bool = False

    def add(self, conversation_id: UUID, user_id: UUID, last_read_at: datetime | None = None) -> None:
        self._members[(conversation_id, user_id)] = ConversationMember(
            conversation_id=conversation_id, user_id=user_id, last_read_at=last_read_at,
        )

    async def list_conversation_memberships(self, user_id: UUID) -> list[ConversationMember]:
        if self.fail:
            raise StorageDown("memberships unavailable")
        return [m for (_, uid), m in self._members.items() if uid == user_id]

    async def get_membership(self, conversation_id: UUID, user_id: UUID) -> ConversationMember | None:
        if self.fail:
            raise StorageDown("memberships unavailable")
        return self._members.get((conversation_id, user_id))


@dataclass
class FakeMembershipWriter:
    _reader: FakeMembershipReader
    fail: bool = False
    updates: list[tuple[UUID, UUID, datetime]] = field(default_factory=list)

    async def update_last_read_at(self, conversation_id: UUID, user_id: UUID, last_read_at: datetime) -> None:
        if self.fail:
            raise StorageDown("cannot write last_read_at")
        self.updates.append((conversation_id, user_id, last_read_at))
        key = (conversation_id, user_id)
        member = self._reader._members.get(key)
        if member is not None and (member.last_read_at is None or member.last_read_at < last_read_at):
            self._reader._members[key] = replace(member, last_read_at=last_read_at)


@dataclass
class FakeMessageReader:
    _messages: list[Message] = field(default_factory=list)

    async def query_messages(
        self,
        conversation_id: UUID,
        *,
        after: datetime | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        found = sorted(
            (
                m for m in self._messages
                if m.conversation_id == conversation_id and (after is None or m.created_at > after)
            ),
            key=lambda m: m.created_at,
        )
        return found[:limit] if limit is not None else found


@dataclass
class FakeMessageWriter:
    _reader: FakeMessageReader

    async def create(self, message: Message) -> Message:
        self._reader._messages.append(message)
        return message


@dataclass
class FakeOutboxWriter:
    _records: list[dict[str, Any]] = field(default_factory=list)
    _pending: list[OutboxRecord] = field(default_factory=list)
    sent: list[int] = field(default_factory=list)
    failed: list[tuple[int, datetime]] = field(default_factory=list)
    dead: list[int] = field(default_factory=list)

    async def add(self, event_type: str, payload: dict[str, Any]) -> None:
        self._records.append({"event_type": event_type, "payload": payload})

    async def fetch_pending(self, batch_size: int) -> list[OutboxRecord]:
        batch, self._pending = self._pending[:batch_size], self._pending[batch_size:]
        return batch

    async def mark_sent(self, ids: list[int]) -> None:
        self.sent.extend(ids)

    async def mark_failed(self, record_id: int, next_retry_at: datetime) -> None:
        self.failed.append((record_id, next_retry_at))

    async def mark_dead(self, record_id: int) -> None:
        self.dead.append(record_id)


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    memberships: FakeMembershipReader = field(default_factory=FakeMembershipReader)
    memberships_w: FakeMembershipWriter | None = None
    messages: FakeMessageReader = field(default_factory=FakeMessageReader)
    messages_w: FakeMessageWriter | None = None
    outbox: FakeOutboxWriter = field(default_factory=FakeOutboxWriter)
    _committed: bool = False
    commits: int = 0

    def __post_init__(self) -> None:
        if self.memberships_w is None:
            self.memberships_w = FakeMembershipWriter(self.memberships)
        if self.messages_w is None:
            self.messages_w = FakeMessageWriter(self.messages)

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        self._committed = True
        self.commits += 1

    async def rollback(self) -> None:
        pass


def uow_factory_for(uow: FakeUoW):
    @asynccontextmanager
    async def _factory() -> AsyncIterator[FakeUoW]:
        yield uow

    return _factory


@pytest.fixture
def uow() -> FakeUoW:
    return FakeUoW()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@dataclass
class FakeChangeFeedClient:
    """Records what the supervisor asked for; the test drives the callbacks."""

    open_gate: asyncio.Event | None = None
    filters: tuple[ChangeFilter, ...] = ()
    handlers: FeedHandlers | None = None
    opened: bool = False
    closed: bool = False
    close_calls: int = 0

    async def open(self, filters: Sequence[ChangeFilter], handlers: FeedHandlers) -> None:
        self.filters = tuple(filters)
        self.handlers = handlers
        self.opened = True
        if self.open_gate is not None:
            await self.open_gate.wait()
        handlers.on_status(ConnectionStatus.CONNECTING)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    @property
    def live(self) -> bool:
        return self.opened and not self.closed

    def emit_status(self, status: ConnectionStatus) -> None:
        assert self.handlers is not None
        self.handlers.on_status(status)

    def emit_event(self, event: ChangeEvent) -> None:
        assert self.handlers is not None
        self.handlers.on_event(event)


@dataclass
class FakeChangeFeed:
    """ChangeFeedClientFactory that keeps every client it produced."""

    clients: list[FakeChangeFeedClient] = field(default_factory=list)
    _next_gate: asyncio.Event | None = None

    def __call__(self) -> FakeChangeFeedClient:
        client = FakeChangeFeedClient(open_gate=self._next_gate)
        self._next_gate = None
        self.clients.append(client)
        return client

    def block_next_open(self) -> asyncio.Event:
        self._next_gate = asyncio.Event()
        return self._next_gate

    @property
    def latest(self) -> FakeChangeFeedClient:
        return self.clients[-1]

    @property
    def live_clients(self) -> list[FakeChangeFeedClient]:
        return [c for c in self.clients if c.live]


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@dataclass
class RecordingSleep:
    """Returns immediately, remembering every requested delay in milliseconds."""

    delays_ms: list[int] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.delays_ms.append(round(seconds * 1000))


@dataclass
class BlockingSleep:
    """Never wakes up on its own; lets a test observe a pending timer."""

    delays_ms: list[int] = field(default_factory=list)
    cancelled: int = 0

    async def __call__(self, seconds: float) -> None:
        self.delays_ms.append(round(seconds * 1000))
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise


async def drain(rounds: int = 10) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
