"""Cosmetic dashboard numbers.

Presentation only: pure functions of a date, with no I/O and no bearing on
messaging state. The same week always produces the same sequence.
"""
from __future__ import annotations

import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

_MODULUS = 2147483647
_MULTIPLIER = 48271

DAILY_MIN = 5
DAILY_MAX = 18
WEEKLY_TARGET_MIN = 70
WEEKLY_TARGET_SPAN = 16
BASE_SHAPE = (5, 8, 11, 14, 17, 20, 23)


@dataclass(frozen=True, slots=True)
class WeekSequence:
    week_key: str
    daily: tuple[int, ...]

    @property
    def total(self) -> int:
        return sum(self.daily)


def lehmer_rng(seed: int) -> Callable[[], float]:
    """Park-Miller style generator returning floats in [0, 1)."""
    state = seed % _MODULUS

    def _next() -> float:
        nonlocal state
        state = (state * _MULTIPLIER) % _MODULUS
        return state / _MODULUS

    return _next


def week_key(day: date) -> str:
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-{iso_week:02d}"


def weekly_sequence(key: str) -> WeekSequence:
    rand = lehmer_rng(int(re.sub(r"\D", "", key)))
    target = WEEKLY_TARGET_MIN + math.floor(rand() * WEEKLY_TARGET_SPAN)

    daily: list[int] = []
    for base in BASE_SHAPE:
        variation = math.floor((rand() - 0.5) * 6)
        daily.append(max(DAILY_MIN, min(DAILY_MAX, base + variation)))

    diff = target - sum(daily)
    while diff != 0:
        i = math.floor(rand() * len(daily))
        # Fall back to the next day when this one is already at a bound.
        for idx in (i, (i + 1) % len(daily)):
            if diff > 0 and daily[idx] < DAILY_MAX:
                daily[idx] += 1
                diff -= 1
                break
            if diff < 0 and daily[idx] > DAILY_MIN:
                daily[idx] -= 1
                diff += 1
                break

    return WeekSequence(week_key=key, daily=tuple(daily))


def completed_this_week(day: date) -> int:
    """Cumulative completions from Monday through `day`."""
    seq = weekly_sequence(week_key(day))
    return sum(seq.daily[: day.isoweekday()])


def launched_today(day: date) -> int:
    rand = lehmer_rng(int(day.strftime("%Y%m%d")))
    return DAILY_MIN + math.floor(rand() * (DAILY_MAX - DAILY_MIN + 1))
