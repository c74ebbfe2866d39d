"""Provider-agnostic weather shapes and the data-source interface."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Protocol


@dataclass(frozen=True)
class HourlyRow:
    """One canonical hour of weather, already in metric units."""
    timestamp: dt.datetime  # timezone-aware, location's fixed UTC offset
    temp_c: float
    relative_humidity_pct: float
    wind_ms: float
    cloud_fraction: float  # 0..1
    rain_probability: float  # 0..1
    rain_mm: float

    def at(self, timestamp: dt.datetime) -> "HourlyRow":
        """Exact copy of this row stamped with another hour."""
        return replace(self, timestamp=timestamp)


@dataclass(frozen=True)
class CoarseStep:
    """A fixed-width forecast step (e.g. 3 hours); values apply to every hour it spans."""
    start: dt.datetime
    step_hours: int
    temp_c: float
    relative_humidity_pct: float
    wind_ms: float
    cloud_fraction: float
    rain_probability: float
    rain_mm: float  # per hour: the step total divided by step_hours

    @property
    def end(self) -> dt.datetime:
        return self.start + dt.timedelta(hours=self.step_hours)

    def covers(self, instant: dt.datetime) -> bool:
        return self.start <= instant < self.end

    def row_at(self, timestamp: dt.datetime) -> HourlyRow:
        return HourlyRow(
            timestamp=timestamp,
            temp_c=self.temp_c,
            relative_humidity_pct=self.relative_humidity_pct,
            wind_ms=self.wind_ms,
            cloud_fraction=self.cloud_fraction,
            rain_probability=self.rain_probability,
            rain_mm=self.rain_mm,
        )


@dataclass(frozen=True)
class DailyAggregate:
    """Daily summary for one local calendar day."""
    date: dt.date  # local date at the location
    utc_offset_seconds: int
    temp_day_c: float
    relative_humidity_pct: float
    wind_ms: float
    cloud_fraction: float
    rain_probability: float
    rain_mm_total: float


@dataclass(frozen=True)
class GeoLocation:
    lat: float
    lon: float
    name: str
    country: str


@dataclass(frozen=True)
class SourceBundle:
    """Whatever the adapters managed to fetch; any member may be missing."""
    fine: Optional[List[HourlyRow]] = None
    coarse: Optional[List[CoarseStep]] = None
    daily: Optional[List[DailyAggregate]] = None

    def is_empty(self) -> bool:
        return not (self.fine or self.coarse or self.daily)


def validate_coordinates(lat: float, lon: float) -> None:
    """Raise ValueError unless lat/lon are inside the valid ranges."""
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"Latitude {lat} outside -90..90")
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"Longitude {lon} outside -180..180")


class WeatherDataSource(Protocol):
    """Interface for anything that can provide the three weather feeds plus geocoding."""

    def fetch_fine(self, lat: float, lon: float) -> List[HourlyRow]:
        """Return fine-grained hourly rows (about 48 hours)."""
        ...

    def fetch_coarse(self, lat: float, lon: float) -> List[CoarseStep]:
        """Return coarse fixed-step forecast steps (about 5 days)."""
        ...

    def fetch_daily(self, lat: float, lon: float) -> List[DailyAggregate]:
        """Return daily aggregates (about 8 days)."""
        ...

    def geocode_direct(self, query: str) -> GeoLocation:
        """Resolve a place name to coordinates."""
        ...

    def geocode_reverse(self, lat: float, lon: float) -> GeoLocation:
        """Resolve coordinates to a place name."""
        ...


@dataclass
class CallableWeatherDataSource(WeatherDataSource):
    """Wrap five callables so they can be swapped for different backends."""

    fine: Callable[..., List[HourlyRow]]
    coarse: Callable[..., List[CoarseStep]]
    daily: Callable[..., List[DailyAggregate]]
    direct: Callable[..., GeoLocation]
    reverse: Callable[..., GeoLocation]

    def fetch_fine(self, lat: float, lon: float) -> List[HourlyRow]:
        return self.fine(lat, lon)

    def fetch_coarse(self, lat: float, lon: float) -> List[CoarseStep]:
        return self.coarse(lat, lon)

    def fetch_daily(self, lat: float, lon: float) -> List[DailyAggregate]:
        return self.daily(lat, lon)

    def geocode_direct(self, query: str) -> GeoLocation:
        return self.direct(query)

    def geocode_reverse(self, lat: float, lon: float) -> GeoLocation:
        return self.reverse(lat, lon)
