from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Callable, Protocol

from challenge_messaging.application.repositories.membership import (
    MembershipReader,
    MembershipWriter,
)
from challenge_messaging.application.repositories.message import MessageReader, MessageWriter
from challenge_messaging.application.repositories.outbox import OutboxWriter


class UnitOfWork(Protocol):
    memberships: MembershipReader
    memberships_w: MembershipWriter
    messages: MessageReader
    messages_w: MessageWriter
    outbox: OutboxWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...


UnitOfWorkFactory = Callable[[], AbstractAsyncContextManager[UnitOfWork]]
