"""
Open-Meteo archive client: the fetch collaborator behind the throttle.

═══════════════════════════════════════════════════════════════════════════
OPEN-METEO ARCHIVE API
═══════════════════════════════════════════════════════════════════════════

Endpoint: https://archive-api.open-meteo.com/v1/archive
    ?latitude=..&longitude=..&start_date=YYYY-MM-DD&end_date=YYYY-MM-DD
    &daily=<comma separated variables>&timezone=Europe/London

The ``daily`` block holds one array per requested variable, parallel to
``daily.time``. Nulls are kept as ``None`` on the Observation; a day with
no reading is never reported as 0.

Current conditions come from the forecast endpoint (``current=`` plus a
one-day ``daily=`` block) and are passed through as a validated dict.

This client does not retry: every call is already paced by the request
throttle, and a retry here would spend quota the throttle cannot see.
HTTP, transport and response-shape errors all surface as
``FetchFailureError`` carrying location, range and kind.

═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from weather_compare.app.analytics.models import Observation, normalise_series
from weather_compare.app.core.config import Settings, settings as default_settings
from weather_compare.app.core.errors import FetchFailureError
from weather_compare.app.core.logging_config import fetch_extra

logger = logging.getLogger(__name__)

SERVICE_NAME = "open-meteo-archive"

# Archive variable → Observation field
DAILY_FIELD_MAP: Dict[str, str] = {
    "precipitation_sum": "rainfall",
    "temperature_2m_mean": "temperature_mean",
    "temperature_2m_min": "temperature_min",
    "temperature_2m_max": "temperature_max",
    "wind_speed_10m_mean": "wind_speed",
    "wind_gusts_10m_max": "wind_gusts",
    "wind_direction_10m_dominant": "wind_direction",
    "shortwave_radiation_sum": "solar_radiation_sum",
    "sunshine_duration": "sunshine_duration",
}

# Physical bounds per variable, inclusive; readings outside become None
DAILY_FIELD_BOUNDS: Dict[str, tuple] = {
    "precipitation_sum": (0.0, None),
    "wind_speed_10m_mean": (0.0, None),
    "wind_gusts_10m_max": (0.0, None),
    "wind_direction_10m_dominant": (0.0, 360.0),
    "shortwave_radiation_sum": (0.0, None),
    "sunshine_duration": (0.0, 86400.0),
}

ALL_DAILY_FIELDS = tuple(DAILY_FIELD_MAP)
RAINFALL_DAILY_FIELDS = (
    "precipitation_sum", "temperature_2m_mean", "temperature_2m_min", "temperature_2m_max",
)
TEMPERATURE_DAILY_FIELDS = ("temperature_2m_mean", "temperature_2m_min", "temperature_2m_max")
WIND_DAILY_FIELDS = ("wind_speed_10m_mean", "wind_direction_10m_dominant", "wind_gusts_10m_max")
SOLAR_DAILY_FIELDS = ("shortwave_radiation_sum", "sunshine_duration")

CURRENT_FIELDS = (
    "temperature_2m", "relative_humidity_2m", "precipitation",
    "wind_speed_10m", "wind_direction_10m", "wind_gusts_10m",
)
CURRENT_DAILY_FIELDS = (
    "precipitation_sum", "temperature_2m_min", "temperature_2m_max",
    "wind_speed_10m_max", "wind_gusts_10m_max",
)


# ═══════════════════════════════════════════════════════════════════════════
# Response schemas
# ═══════════════════════════════════════════════════════════════════════════

def _bounded(value: Optional[float], low: Optional[float], high: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    if low is not None and value < low:
        return None
    if high is not None and value > high:
        return None
    return value


class DailyBlock(BaseModel):
    """
    Parallel daily arrays; every present array must match ``time``.

    Non-negative variables and the 0-359 wind bearing are checked here, so
    an impossible reading is stored as missing rather than averaged in.
    """

    model_config = ConfigDict(extra="ignore")

    time: List[date]
    precipitation_sum: Optional[List[Optional[float]]] = None
    temperature_2m_mean: Optional[List[Optional[float]]] = None
    temperature_2m_min: Optional[List[Optional[float]]] = None
    temperature_2m_max: Optional[List[Optional[float]]] = None
    wind_speed_10m_mean: Optional[List[Optional[float]]] = None
    wind_gusts_10m_max: Optional[List[Optional[float]]] = None
    wind_direction_10m_dominant: Optional[List[Optional[float]]] = None
    shortwave_radiation_sum: Optional[List[Optional[float]]] = None
    sunshine_duration: Optional[List[Optional[float]]] = None

    @model_validator(mode="after")
    def _check_daily(self) -> "DailyBlock":
        n = len(self.time)
        for name in DAILY_FIELD_MAP:
            values = getattr(self, name)
            if values is not None and len(values) != n:
                raise ValueError(f"daily.{name} has {len(values)} values for {n} days")

        for name, (low, high) in DAILY_FIELD_BOUNDS.items():
            values = getattr(self, name)
            if not values:
                continue
            cleaned = [_bounded(v, low, high) for v in values]
            dropped = sum(1 for v, c in zip(values, cleaned) if v is not None and c is None)
            if dropped:
                logger.warning("Dropped %d out-of-range daily.%s values", dropped, name)
            if name == "wind_direction_10m_dominant":
                # 360 and 0 are the same bearing
                cleaned = [None if c is None else c % 360.0 for c in cleaned]
            setattr(self, name, cleaned)
        return self


class ArchiveResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    latitude: float
    longitude: float
    timezone: Optional[str] = None
    elevation: Optional[float] = None
    daily: DailyBlock

    def to_observations(self) -> List[Observation]:
        columns = {
            field: getattr(self.daily, name)
            for name, field in DAILY_FIELD_MAP.items()
            if getattr(self.daily, name) is not None
        }
        observations = [
            Observation(date=day, **{field: values[i] for field, values in columns.items()})
            for i, day in enumerate(self.daily.time)
        ]
        return normalise_series(observations)


class CurrentResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    latitude: float
    longitude: float
    current: Dict[str, Any]


# ═══════════════════════════════════════════════════════════════════════════
# Client
# ═══════════════════════════════════════════════════════════════════════════

class OpenMeteoArchiveClient:
    """
    Async Open-Meteo client.

    Usage:
        client = OpenMeteoArchiveClient()
        series = await client.fetch_daily(51.5074, -0.1278, date(2024, 1, 1), date(2024, 12, 31))
        await client.aclose()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        forecast_url: Optional[str] = None,
        timeout: Optional[float] = None,
        timezone: Optional[str] = None,
        *,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        config = config or default_settings
        self.base_url = base_url or config.ARCHIVE_API_URL
        self.forecast_url = forecast_url or config.FORECAST_API_URL
        self.timeout = timeout or config.WEATHER_FETCH_TIMEOUT
        self.timezone = timezone or config.ARCHIVE_TIMEZONE
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _get_json(self, url: str, params: Dict[str, Any], context: Dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            body = e.response.text[:200]
            logger.error("Open-Meteo HTTP %d: %s", e.response.status_code, body)
            raise FetchFailureError(
                SERVICE_NAME, f"HTTP {e.response.status_code}: {body}",
                status=e.response.status_code, **context,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Open-Meteo request failed: %s", e)
            raise FetchFailureError(SERVICE_NAME, f"{type(e).__name__}: {e}", **context) from e
        except ValueError as e:
            raise FetchFailureError(SERVICE_NAME, f"response is not JSON: {e}", **context) from e

    async def fetch_daily(
        self,
        latitude: float,
        longitude: float,
        start: date,
        end: date,
        fields: Sequence[str] = ALL_DAILY_FIELDS,
    ) -> List[Observation]:
        """
        Fetch daily observations for ``[start, end]`` inclusive.

        Args:
            fields: archive variable names (keys of DAILY_FIELD_MAP)

        Raises:
            FetchFailureError: on HTTP, transport or schema errors
        """
        unknown = [f for f in fields if f not in DAILY_FIELD_MAP]
        if unknown:
            raise ValueError(f"Unknown daily fields: {', '.join(unknown)}")

        context = {
            "latitude": latitude,
            "longitude": longitude,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "kind": ",".join(fields),
        }
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "daily": ",".join(fields),
            "timezone": self.timezone,
        }

        logger.info(
            "Fetching archive %s..%s for lat=%.4f, lon=%.4f",
            start, end, latitude, longitude,
            extra=fetch_extra(latitude, longitude, start=start, end=end),
        )
        data = await self._get_json(self.base_url, params, context)

        try:
            parsed = ArchiveResponse.model_validate(data)
        except ValidationError as e:
            logger.error("Invalid archive response: %s", e.errors()[:3])
            raise FetchFailureError(SERVICE_NAME, "invalid response format", **context) from e

        observations = parsed.to_observations()
        logger.info("Fetched %d daily observations", len(observations))
        return observations

    async def fetch_current(self, latitude: float, longitude: float) -> Dict[str, Any]:
        """Current conditions plus today's daily summary, as returned by the API."""
        context = {"latitude": latitude, "longitude": longitude, "kind": "current_weather"}
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "current": ",".join(CURRENT_FIELDS),
            "daily": ",".join(CURRENT_DAILY_FIELDS),
            "timezone": self.timezone,
            "forecast_days": 1,
        }
        data = await self._get_json(self.forecast_url, params, context)
        try:
            CurrentResponse.model_validate(data)
        except ValidationError as e:
            raise FetchFailureError(SERVICE_NAME, "invalid current weather format", **context) from e
        return data
