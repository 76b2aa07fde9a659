"""
Clock abstraction for TTL expiry and throttle windows.

Everything that reads the time or waits goes through a clock object so
tests can move time forward without sleeping.
"""

from __future__ import annotations

import asyncio
import time
from datetime import date, datetime, timezone


class SystemClock:
    """Wall-clock time in epoch seconds, real asyncio sleeps."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

    def today(self) -> date:
        return datetime.fromtimestamp(self.now(), tz=timezone.utc).date()
