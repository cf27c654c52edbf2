from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from challenge_messaging.application.dto.events import ChangeEvent
from challenge_messaging.application.dto.feed import ChangeFilter
from challenge_messaging.domain.value_objects.enums import ConnectionStatus

EventHandler = Callable[[ChangeEvent], None]
StatusHandler = Callable[[ConnectionStatus], None]


@dataclass(frozen=True, slots=True)
class FeedHandlers:
    on_event: EventHandler
    on_status: StatusHandler


class ChangeFeedClient(Protocol):
    """One subscription to the server-pushed change stream.

    open() never raises: every failure is reported through
    handlers.on_status as ERROR or TIMED_OUT. Delivery is at-least-once.
    """

    async def open(self, filters: Sequence[ChangeFilter], handlers: FeedHandlers) -> None: ...

    async def close(self) -> None:
        """Terminate the subscription. Safe to call more than once."""
        ...


ChangeFeedClientFactory = Callable[[], ChangeFeedClient]
