from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Query

from challenge_messaging.api.deps import ClockDep
from challenge_messaging.api.v1.schemas.kpi import WeeklyKpiResponse
from challenge_messaging.services import kpi

router = APIRouter(prefix="/api/v1/kpi", tags=["kpi"])


@router.get("/weekly", response_model=WeeklyKpiResponse)
async def weekly(
    clock: ClockDep,
    day: date | None = Query(None),
) -> WeeklyKpiResponse:
    day = day or clock.now().date()
    seq = kpi.weekly_sequence(kpi.week_key(day))
    return WeeklyKpiResponse(
        week_key=seq.week_key,
        daily=list(seq.daily),
        completed_this_week=kpi.completed_this_week(day),
        launched_today=kpi.launched_today(day),
    )
