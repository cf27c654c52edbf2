"""JSON envelope for change events: {"event": <change type>, "data": {...}}."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID


def _default(o: object) -> Any:
    if isinstance(o, UUID):
        return str(o)
    if isinstance(o, datetime):
        return o.isoformat()
    raise TypeError(f"{type(o).__name__} is not JSON serializable")


def serialize_change(event_type: str, data: dict[str, Any]) -> str:
    return json.dumps({"event": event_type, "data": data}, default=_default, separators=(",", ":"))


def deserialize_change(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    """Split an envelope into (event type, data).

    Raises ValueError for anything that is not a well-formed envelope.
    """
    envelope = json.loads(raw)
    if not isinstance(envelope, dict):
        raise ValueError("change envelope must be an object")
    event_type, data = envelope.get("event"), envelope.get("data")
    if not isinstance(event_type, str) or not isinstance(data, dict):
        raise ValueError("change envelope needs a string 'event' and an object 'data'")
    return event_type, data
