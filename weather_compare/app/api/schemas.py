"""
Pydantic schemas for the climate comparison API.

Separated from the route handlers so tests and other callers can build and
validate the same shapes.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ResponseStatus(str, Enum):
    SUCCESS = "success"
    FALLBACK_USED = "fallback_used"


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------

class LocationOut(BaseModel):
    latitude: float
    longitude: float


class SeriesMeta(BaseModel):
    """Where the data came from; every analytics response carries one."""
    status: ResponseStatus = ResponseStatus.SUCCESS
    from_cache: bool = False
    cached_at: Optional[datetime] = Field(
        default=None, description="When the oldest cached piece was stored; null for fresh data",
    )
    location: LocationOut
    domain: Optional[str] = None
    days: int = Field(default=0, description="Observations the figures were computed from")


class TrendOut(BaseModel):
    slope: float
    intercept: float
    r_squared: float = Field(..., ge=0.0, le=1.0)
    description: str
    n_points: int
    unit: str = ""


class EventOut(BaseModel):
    kind: str
    start: str
    end: str
    duration: int
    values: Dict[str, float] = {}


class PercentilesOut(BaseModel):
    p10: float = 0.0
    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class ComparisonResponse(BaseModel):
    meta: SeriesMeta
    month: Optional[int] = None
    records: List[Dict[str, Any]] = []


class SeasonalResponse(BaseModel):
    meta: SeriesMeta
    seasons: Dict[str, List[Dict[str, Any]]] = {}


class PercentilesResponse(BaseModel):
    meta: SeriesMeta
    percentiles: PercentilesOut


class ExtremesResponse(BaseModel):
    meta: SeriesMeta
    events: Dict[str, List[EventOut]] = {}


class TrendsResponse(BaseModel):
    meta: SeriesMeta
    trends: Dict[str, Optional[TrendOut]] = {}


class RecentResponse(BaseModel):
    meta: SeriesMeta
    observations: List[Dict[str, Any]] = []


class SummaryResponse(BaseModel):
    meta: SeriesMeta
    summary: Dict[str, Any]


class CacheStatsOut(BaseModel):
    total_entries: int
    total_size: int
    oldest_entry: Optional[str] = None
    by_kind: Dict[str, int] = {}


class CacheClearOut(BaseModel):
    removed: int
    scope: str


class ThrottleStatsOut(BaseModel):
    current_calls: int
    quota: int
    reset_in_ms: int
    queued: int = 0
    state: str
    dispatched_total: int = 0
