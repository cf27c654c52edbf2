from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel


class NotificationStateResponse(BaseModel):
    has_new_messages: bool
    unread_counts: dict[UUID, int] = {}
