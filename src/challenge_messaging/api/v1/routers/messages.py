from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query

from challenge_messaging.api.deps import CurrentPrincipal, UoWDep
from challenge_messaging.api.v1.schemas.message import MessageResponse, SendMessageRequest
from challenge_messaging.services import message_service

router = APIRouter(prefix="/api/v1/conversations", tags=["messages"])


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
    after: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
) -> list[MessageResponse]:
    messages = await message_service.list_messages(
        conversation_id, principal.user_id, after, limit, uow,
    )
    return [MessageResponse.model_validate(m, from_attributes=True) for m in messages]


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> MessageResponse:
    msg = await message_service.send_message(
        conversation_id,
        principal.user_id,
        body.content,
        uow,
        receiver_id=body.receiver_id,
        challenge_id=body.challenge_id,
    )
    return MessageResponse.model_validate(msg, from_attributes=True)
