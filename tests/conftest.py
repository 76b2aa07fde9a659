"""
Shared fixtures: a virtual clock and small series builders.
"""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from typing import List, Optional, Sequence

import pytest

from weather_compare.app.analytics.models import Observation


class FakeClock:
    """Virtual time: ``sleep`` advances ``now`` instead of waiting."""

    def __init__(self, start: float = 1_000.0, today: date = date(2025, 6, 15)):
        self.t = start
        self._today = today
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += max(0.0, seconds)
        await asyncio.sleep(0)

    def today(self) -> date:
        return self._today


def daily_series(
    start: date,
    field: str,
    values: Sequence[Optional[float]],
    **constant,
) -> List[Observation]:
    """One observation per consecutive day, ``field`` taken from ``values``."""
    return [
        Observation(date=start + timedelta(days=i), **{field: v}, **constant)
        for i, v in enumerate(values)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_series():
    return daily_series
