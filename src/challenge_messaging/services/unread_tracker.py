"""Per-conversation unread state of a single user.

The tracker does not know about the transport. It is fed by incoming
message events and by local mark-read commands, and it is reconciled against
storage whenever the feed may have dropped events.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone

from challenge_messaging.application.dto.conversation import ConversationSnapshot
from challenge_messaging.application.ports.clock import Clock, SystemClock
from challenge_messaging.application.uow import UnitOfWorkFactory
from challenge_messaging.domain.entities.message import Message
from challenge_messaging.services import read_state_service

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

ChangeListener = Callable[[], None]


def compute_unread(
    user_id: uuid.UUID,
    snapshots: Iterable[ConversationSnapshot],
) -> dict[uuid.UUID, dict[uuid.UUID, datetime]]:
    """Unread message ids (with their created_at) per conversation.

    A message is unread when someone else sent it after the member's
    last_read_at. A missing last_read_at counts as the epoch.
    """
    unread: dict[uuid.UUID, dict[uuid.UUID, datetime]] = {}
    for snapshot in snapshots:
        last_read = snapshot.member.last_read_at or EPOCH
        unread[snapshot.member.conversation_id] = {
            m.id: m.created_at
            for m in snapshot.messages
            if m.sender_id != user_id and m.created_at > last_read
        }
    return unread


class UnreadTracker:
    def __init__(
        self,
        user_id: uuid.UUID,
        uow_factory: UnitOfWorkFactory,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._user_id = user_id
        self._uow_factory = uow_factory
        self._clock = clock or SystemClock()
        self._tracked: set[uuid.UUID] = set()
        self._last_read: dict[uuid.UUID, datetime] = {}
        self._unread: dict[uuid.UUID, dict[uuid.UUID, datetime]] = {}
        self._listeners: list[ChangeListener] = []
        self._epoch = 0

    @property
    def user_id(self) -> uuid.UUID:
        return self._user_id

    @property
    def tracked(self) -> frozenset[uuid.UUID]:
        return frozenset(self._tracked)

    def unread_count(self, conversation_id: uuid.UUID) -> int:
        return len(self._unread.get(conversation_id, ()))

    def is_unread(self, conversation_id: uuid.UUID) -> bool:
        return self.unread_count(conversation_id) > 0

    def unread_counts(self) -> dict[uuid.UUID, int]:
        return {cid: self.unread_count(cid) for cid in self._tracked}

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a callback fired after every state change. Returns an unsubscriber."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def track(self, conversation_ids: Iterable[uuid.UUID]) -> None:
        tracked = set(conversation_ids)
        if tracked == self._tracked:
            return
        self._tracked = tracked
        for cid in list(self._unread):
            if cid not in tracked:
                del self._unread[cid]
        self._notify()

    def record_incoming(self, message: Message) -> bool:
        """Mark the message's conversation unread. Returns True if state changed."""
        if message.sender_id == self._user_id:
            return False
        cid = message.conversation_id
        if cid not in self._tracked:
            return False
        if message.created_at <= self._last_read.get(cid, EPOCH):
            return False
        pending = self._unread.setdefault(cid, {})
        if message.id in pending:
            return False
        pending[message.id] = message.created_at
        self._notify()
        return True

    async def mark_read(self, conversation_id: uuid.UUID) -> bool:
        """Persist a new last_read_at, then clear the conversation.

        On a storage failure the unread state is kept and False is returned.
        """
        epoch = self._epoch
        read_at = self._clock.now()
        try:
            async with self._uow_factory() as uow:
                await read_state_service.mark_read(conversation_id, self._user_id, read_at, uow)
        except Exception:
            logger.exception("Failed to mark conversation %s read", conversation_id)
            return False
        if epoch != self._epoch:
            return False
        self._apply_read(conversation_id, read_at)
        self._notify()
        return True

    async def mark_all_read(self) -> bool:
        """Mark every tracked conversation read in one write.

        Conversations whose membership is gone are dropped from the tracked set.
        """
        if not self._tracked:
            return True
        epoch = self._epoch
        conversation_ids = sorted(self._tracked)
        read_at = self._clock.now()
        try:
            async with self._uow_factory() as uow:
                marked = await read_state_service.mark_all_read(
                    conversation_ids, self._user_id, read_at, uow,
                )
        except Exception:
            logger.exception("Failed to mark %d conversations read", len(conversation_ids))
            return False
        if epoch != self._epoch:
            return False
        for cid in conversation_ids:
            if cid in marked:
                self._apply_read(cid, read_at)
            else:
                self._forget(cid)
        self._notify()
        return True

    def recompute_from_snapshot(self, snapshots: Iterable[ConversationSnapshot]) -> None:
        """Replace tracked conversations and unread state with the snapshot's.

        A read timestamp recorded locally wins over an older one in the
        snapshot, so a reconcile racing a mark-read cannot bring back
        indicators that were already cleared.
        """
        merged: list[ConversationSnapshot] = []
        last_read: dict[uuid.UUID, datetime] = {}
        for snapshot in snapshots:
            cid = snapshot.member.conversation_id
            stored = snapshot.member.last_read_at
            local = self._last_read.get(cid)
            effective = max(filter(None, (stored, local)), default=None)
            if effective is not None:
                last_read[cid] = effective
            if effective != stored:
                snapshot = replace(snapshot, member=replace(snapshot.member, last_read_at=effective))
            merged.append(snapshot)

        self._tracked = {s.member.conversation_id for s in merged}
        self._last_read = last_read
        self._unread = compute_unread(self._user_id, merged)
        self._notify()

    async def reconcile(self) -> bool:
        """Reload memberships and unread messages from storage.

        Returns False, keeping the current state, if storage fails or the
        tracker was cleared while the snapshot was loading.
        """
        epoch = self._epoch
        try:
            async with self._uow_factory() as uow:
                snapshots = await read_state_service.load_snapshot(self._user_id, uow)
        except Exception:
            logger.exception("Unread reconcile failed for user %s", self._user_id)
            return False
        if epoch != self._epoch:
            logger.debug("Discarding stale unread snapshot for user %s", self._user_id)
            return False
        self.recompute_from_snapshot(snapshots)
        logger.debug(
            "Reconciled unread state for user %s: %d conversations, %d unread",
            self._user_id, len(self._tracked), sum(1 for c in self._tracked if self.is_unread(c)),
        )
        return True

    def clear(self) -> None:
        self._epoch += 1
        self._tracked.clear()
        self._last_read.clear()
        self._unread.clear()
        self._notify()

    def _forget(self, conversation_id: uuid.UUID) -> None:
        self._tracked.discard(conversation_id)
        self._last_read.pop(conversation_id, None)
        self._unread.pop(conversation_id, None)

    def _apply_read(self, conversation_id: uuid.UUID, read_at: datetime) -> None:
        if read_at > self._last_read.get(conversation_id, EPOCH):
            self._last_read[conversation_id] = read_at
        pending = self._unread.get(conversation_id)
        if pending:
            # Messages that arrived while the write was in flight stay unread.
            self._unread[conversation_id] = {
                mid: ts for mid, ts in pending.items() if ts > read_at
            }

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
