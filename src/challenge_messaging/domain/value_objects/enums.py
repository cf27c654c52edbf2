from __future__ import annotations

from enum import StrEnum


class ConnectionStatus(StrEnum):
    """Lifecycle of a change-feed subscription.

    The transport only ever reports CONNECTING, SUBSCRIBED, ERROR and
    TIMED_OUT. IDLE and FAILED are owned by the reconnect supervisor.
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_failure(self) -> bool:
        return self in (ConnectionStatus.ERROR, ConnectionStatus.TIMED_OUT)


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ConversationType(StrEnum):
    INDIVIDUAL = "individual"
    GROUP = "group"
