from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from challenge_messaging.api.deps import ClockDep, CurrentPrincipal, UoWDep, UoWFactoryDep
from challenge_messaging.api.v1.schemas.notification import NotificationStateResponse
from challenge_messaging.application.dto.principal import Principal
from challenge_messaging.application.ports.clock import Clock
from challenge_messaging.application.uow import UnitOfWorkFactory
from challenge_messaging.services import read_state_service
from challenge_messaging.services.notification_aggregator import NotificationAggregator
from challenge_messaging.services.unread_tracker import UnreadTracker

router = APIRouter(prefix="/api/v1", tags=["notifications"])


async def _load_tracker(
    principal: Principal,
    uow_factory: UnitOfWorkFactory,
    clock: Clock,
) -> UnreadTracker:
    tracker = UnreadTracker(principal.user_id, uow_factory, clock=clock)
    if not await tracker.reconcile():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unread state is temporarily unavailable",
        )
    return tracker


def _state(tracker: UnreadTracker) -> NotificationStateResponse:
    aggregator = NotificationAggregator(tracker)
    try:
        return NotificationStateResponse(
            has_new_messages=aggregator.has_new_messages,
            unread_counts=tracker.unread_counts(),
        )
    finally:
        aggregator.close()


@router.get("/notifications", response_model=NotificationStateResponse)
async def get_notifications(
    principal: CurrentPrincipal,
    uow_factory: UoWFactoryDep,
    clock: ClockDep,
) -> NotificationStateResponse:
    tracker = await _load_tracker(principal, uow_factory, clock)
    return _state(tracker)


@router.post("/notifications/read", response_model=NotificationStateResponse)
async def mark_all_read(
    principal: CurrentPrincipal,
    uow_factory: UoWFactoryDep,
    clock: ClockDep,
) -> NotificationStateResponse:
    tracker = await _load_tracker(principal, uow_factory, clock)
    aggregator = NotificationAggregator(tracker)
    try:
        if not await aggregator.mark_messages_as_read():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Could not mark messages as read",
            )
    finally:
        aggregator.close()
    return _state(tracker)


@router.post("/conversations/{conversation_id}/read", response_model=NotificationStateResponse)
async def mark_conversation_read(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
    uow_factory: UoWFactoryDep,
    clock: ClockDep,
) -> NotificationStateResponse:
    await read_state_service.mark_read(conversation_id, principal.user_id, clock.now(), uow)
    tracker = await _load_tracker(principal, uow_factory, clock)
    return _state(tracker)
