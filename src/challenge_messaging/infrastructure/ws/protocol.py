"""WebSocket message envelope models."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class WsInbound(BaseModel):
    """Client → Server."""

    type: str  # ping | mark_read | mark_all_read | open_conversation | close_conversation | reconnect
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Server → Client."""

    type: str  # notifications.state | feed.status | chat.status | message.created | error | pong
    data: dict[str, Any] = {}
