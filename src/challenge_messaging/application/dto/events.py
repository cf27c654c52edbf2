from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from challenge_messaging.domain.entities.message import Message
from challenge_messaging.domain.value_objects.enums import ChangeType

MESSAGES_TABLE = "messages"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One row-level change pushed by the change feed."""

    table: str
    type: ChangeType
    record: dict[str, Any] = field(default_factory=dict)
    commit_timestamp: datetime | None = None

    @classmethod
    def from_envelope(cls, event_type: str, data: dict[str, Any]) -> ChangeEvent:
        """Build an event from a deserialized bus envelope.

        Raises ValueError or KeyError on malformed input.
        """
        committed = data.get("commit_timestamp")
        return cls(
            table=data["table"],
            type=ChangeType(event_type),
            record=dict(data.get("record") or {}),
            commit_timestamp=datetime.fromisoformat(committed) if committed else None,
        )

    def to_envelope_data(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "record": self.record,
            "commit_timestamp": self.commit_timestamp.isoformat() if self.commit_timestamp else None,
        }

    def to_message(self) -> Message:
        if self.table != MESSAGES_TABLE:
            raise ValueError(f"not a message change: {self.table}")
        return message_from_record(self.record)


def _uuid_or_none(raw: Any) -> UUID | None:
    return UUID(str(raw)) if raw else None


def _datetime_or_none(raw: Any) -> datetime | None:
    if raw is None or isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(raw)


def message_from_record(record: dict[str, Any]) -> Message:
    created_at = _datetime_or_none(record["created_at"])
    if created_at is None:
        raise ValueError("message record without created_at")
    return Message(
        id=UUID(str(record["id"])),
        conversation_id=UUID(str(record["conversation_id"])),
        sender_id=UUID(str(record["sender_id"])),
        receiver_id=_uuid_or_none(record.get("receiver_id")),
        content=record.get("content"),
        challenge_id=_uuid_or_none(record.get("challenge_id")),
        created_at=created_at,
        read_at=_datetime_or_none(record.get("read_at")),
    )


def message_to_record(message: Message) -> dict[str, Any]:
    """JSON-safe row representation, as published on the change feed."""
    return {
        "id": str(message.id),
        "conversation_id": str(message.conversation_id),
        "sender_id": str(message.sender_id),
        "receiver_id": str(message.receiver_id) if message.receiver_id else None,
        "content": message.content,
        "challenge_id": str(message.challenge_id) if message.challenge_id else None,
        "created_at": message.created_at.isoformat(),
        "read_at": message.read_at.isoformat() if message.read_at else None,
    }
