from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from challenge_messaging.api.deps import UoWFactoryDep, get_verifier
from challenge_messaging.application.dto.events import message_to_record
from challenge_messaging.application.dto.principal import Principal
from challenge_messaging.application.ports.change_feed import ChangeFeedClientFactory
from challenge_messaging.application.uow import UnitOfWorkFactory
from challenge_messaging.config import settings
from challenge_messaging.domain.entities.message import Message
from challenge_messaging.domain.value_objects.enums import ConnectionStatus
from challenge_messaging.infrastructure.ws.protocol import WsInbound, WsOutbound
from challenge_messaging.services.conversation_stream import ConversationStream
from challenge_messaging.services.notification_service import NotificationService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


def _reconnect_options() -> dict[str, Any]:
    return {
        "max_attempts": settings.RECONNECT_MAX_ATTEMPTS,
        "base_delay_ms": settings.RECONNECT_BASE_DELAY_MS,
        "max_delay_ms": settings.RECONNECT_MAX_DELAY_MS,
    }


async def _authenticate(token: str) -> Principal | None:
    try:
        verifier = get_verifier()
        return await verifier.verify(token)
    except Exception:
        logger.debug("WS auth failed", exc_info=True)
        return None


class NotificationSession:
    """Services owned by one WebSocket connection.

    Feed callbacks are synchronous, so everything bound for the client goes
    through a queue drained by a single writer task.
    """

    def __init__(
        self,
        principal: Principal,
        client_factory: ChangeFeedClientFactory,
        uow_factory: UnitOfWorkFactory,
    ) -> None:
        self.principal = principal
        self.outbox: asyncio.Queue[WsOutbound] = asyncio.Queue()
        self.notifications = NotificationService(
            uow_factory, client_factory, **_reconnect_options(),
        )
        self.chat = ConversationStream(
            principal.user_id,
            client_factory,
            on_message=self._on_message,
            on_status=partial(self._on_status, "chat.status"),
            **_reconnect_options(),
        )
        self.notifications.subscribe_state(self._on_state)
        self.notifications.subscribe_status(partial(self._on_status, "feed.status"))

    def push(self, event_type: str, data: dict[str, Any]) -> None:
        self.outbox.put_nowait(WsOutbound(type=event_type, data=data))

    def push_state(self) -> None:
        self.push(
            "notifications.state",
            {
                "has_new_messages": self.notifications.has_new_messages,
                "unread_counts": {
                    str(cid): count for cid, count in self.notifications.unread_counts().items()
                },
            },
        )

    async def start(self) -> None:
        await self.notifications.start(self.principal.user_id)
        self.push_state()

    async def stop(self) -> None:
        await self.chat.close()
        await self.notifications.stop()

    def _on_state(self, _value: bool) -> None:
        self.push_state()

    def _on_status(self, event_type: str, status: ConnectionStatus) -> None:
        self.push(event_type, {"status": status.value})

    def _on_message(self, message: Message) -> None:
        self.push("message.created", {"message": message_to_record(message)})


@router.websocket("/ws/notifications")
async def ws_notifications(
    websocket: WebSocket,
    uow_factory: UoWFactoryDep,
    token: str = Query(...),
) -> None:
    principal = await _authenticate(token)
    if principal is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    client_factory: ChangeFeedClientFactory | None = getattr(
        websocket.app.state, "change_feed_factory", None,
    )
    if client_factory is None:
        await websocket.close(code=1011, reason="Change feed unavailable")
        return

    await websocket.accept()
    session = NotificationSession(principal, client_factory, uow_factory)
    pkey = principal.principal_key

    writer_task = asyncio.create_task(_writer(websocket, session), name=f"ws-writer-{pkey}")
    heartbeat_task = asyncio.create_task(_heartbeat(session), name=f"ws-heartbeat-{pkey}")
    try:
        await session.start()
        await _read_loop(websocket, session)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", pkey)
    finally:
        heartbeat_task.cancel()
        writer_task.cancel()
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)
        await session.stop()


async def _writer(ws: WebSocket, session: NotificationSession) -> None:
    while True:
        out = await session.outbox.get()
        await ws.send_text(out.model_dump_json())


async def _heartbeat(session: NotificationSession) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    while True:
        await asyncio.sleep(interval)
        session.push("pong", {})


async def _read_loop(ws: WebSocket, session: NotificationSession) -> None:
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except Exception:
            session.push("error", {"code": "invalid_payload"})
            continue

        try:
            await _dispatch(session, msg)
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            session.push("error", {"code": "invalid_data", "type": msg.type, "detail": str(exc)})


async def _dispatch(session: NotificationSession, msg: WsInbound) -> None:
    if msg.type == "ping":
        session.push("pong", {})

    elif msg.type == "mark_read":
        conversation_id = UUID(msg.data["conversation_id"])
        if not await session.notifications.mark_read(conversation_id):
            session.push("error", {"code": "mark_read_failed", "conversation_id": str(conversation_id)})

    elif msg.type == "mark_all_read":
        if not await session.notifications.mark_messages_as_read():
            session.push("error", {"code": "mark_read_failed"})

    elif msg.type == "open_conversation":
        if msg.data.get("peer_id"):
            await session.chat.open_peer(UUID(msg.data["peer_id"]))
        else:
            await session.chat.open_conversation(UUID(msg.data["conversation_id"]))

    elif msg.type == "close_conversation":
        await session.chat.close()

    elif msg.type == "reconnect":
        if msg.data.get("feed") == "chat":
            await session.chat.reconnect()
        else:
            await session.notifications.reconnect()

    else:
        session.push("error", {"code": "unknown_type", "type": msg.type})
