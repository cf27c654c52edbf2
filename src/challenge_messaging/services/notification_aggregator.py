from __future__ import annotations

import logging
from collections.abc import Callable

from challenge_messaging.services.unread_tracker import UnreadTracker

logger = logging.getLogger(__name__)

StateListener = Callable[[bool], None]


class NotificationAggregator:
    """Single "has new messages" view over an UnreadTracker.

    Holds no unread state of its own; the last published value is kept only
    to notify subscribers when the flag flips.
    """

    def __init__(self, tracker: UnreadTracker) -> None:
        self._tracker = tracker
        self._listeners: list[StateListener] = []
        self._published = self.has_new_messages
        self._detach: Callable[[], None] | None = tracker.add_listener(self._on_tracker_change)

    @property
    def has_new_messages(self) -> bool:
        return any(self._tracker.is_unread(cid) for cid in self._tracker.tracked)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def mark_messages_as_read(self) -> bool:
        """Mark every tracked conversation read. False if storage rejected it."""
        return await self._tracker.mark_all_read()

    def close(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None
        self._listeners.clear()

    def _on_tracker_change(self) -> None:
        value = self.has_new_messages
        if value == self._published:
            return
        self._published = value
        logger.debug("has_new_messages -> %s for user %s", value, self._tracker.user_id)
        for listener in list(self._listeners):
            listener(value)
