from __future__ import annotations

from pydantic import BaseModel


class WeeklyKpiResponse(BaseModel):
    week_key: str
    daily: list[int]
    completed_this_week: int
    launched_today: int
