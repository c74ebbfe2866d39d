"""Fetch the three weather feeds, merge them and turn the timeline into scored windows."""
from __future__ import annotations

import datetime as dt
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from laundry_optimizer import config
from laundry_optimizer.cache import TTLCache
from laundry_optimizer.data_sources import (
    GeoLocation,
    HourlyRow,
    SourceBundle,
    WeatherDataSource,
    build_data_source,
    validate_coordinates,
)
from laundry_optimizer.domain import DEFAULT_WEIGHTS, WeightVector, Window
from laundry_optimizer.errors import InsufficientDataError, ProviderUnavailable, UnknownWindowError
from laundry_optimizer.merge import merge
from laundry_optimizer.windows import build, location_key, make_window, parse_window_id, rescore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="forecast_service")

SOURCE_KINDS = ("fine", "coarse", "daily")
WINDOW_KIND = "window"
GEOCODE_KIND = "geocode"


@dataclass
class ForecastResult:
    """A merged timeline plus its windows, with degraded-mode flags."""
    location_key: str
    lat: float
    lon: float
    timeline: List[HourlyRow]
    windows: List[Window] = field(default_factory=list)
    stale: bool = False
    degraded_sources: List[str] = field(default_factory=list)
    generated_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class ForecastService:
    def __init__(
        self,
        data_source: WeatherDataSource,
        cache: TTLCache,
        settings: config.Settings | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.data_source = data_source
        self.cache = cache
        self.settings = settings or config.settings
        self.executor = executor or ThreadPoolExecutor(max_workers=6, thread_name_prefix="provider")

    def _loaders(self, lat: float, lon: float) -> Dict[str, Callable[[], list]]:
        return {
            "fine": lambda: self.data_source.fetch_fine(lat, lon),
            "coarse": lambda: self.data_source.fetch_coarse(lat, lon),
            "daily": lambda: self.data_source.fetch_daily(lat, lon),
        }

    def fetch_sources(self, lat: float, lon: float) -> Tuple[SourceBundle, bool, List[str]]:
        """Fetch all feeds concurrently through the cache.

        A failed feed falls back to its stale snapshot (flagging the result stale)
        or is dropped and listed as degraded. All three failing raises ProviderUnavailable.
        """
        key = location_key(lat, lon)
        futures = {
            kind: self.executor.submit(self.cache.get_or_load, kind, key, loader)
            for kind, loader in self._loaders(lat, lon).items()
        }

        fetched: Dict[str, Optional[list]] = {}
        stale = False
        degraded: List[str] = []
        for kind, future in futures.items():
            try:
                fetched[kind] = future.result()
                continue
            except ProviderUnavailable as exc:
                error = exc
            hit = self.cache.get_stale(kind, key)
            if hit is not None:
                logger.warning(
                    "Serving stale snapshot",
                    extra={"source": kind, "location_key": key, "error": error.message},
                )
                fetched[kind] = hit.value
                stale = True
            else:
                logger.warning(
                    "Weather source degraded",
                    extra={"source": kind, "location_key": key, "error": error.message},
                )
                fetched[kind] = None
                degraded.append(kind)

        if len(degraded) == len(SOURCE_KINDS):
            raise ProviderUnavailable("weather", "all weather sources are unavailable")
        return SourceBundle(**fetched), stale, degraded

    def get_timeline(
        self,
        lat: float,
        lon: float,
        hours: int = 48,
        *,
        now: dt.datetime | None = None,
    ) -> ForecastResult:
        validate_coordinates(lat, lon)
        bundle, stale, degraded = self.fetch_sources(lat, lon)
        timeline = merge(bundle, hours, now=now)
        return ForecastResult(
            location_key=location_key(lat, lon),
            lat=lat,
            lon=lon,
            timeline=timeline,
            stale=stale,
            degraded_sources=degraded,
        )

    def get_forecast(
        self,
        lat: float,
        lon: float,
        *,
        days: int | None = None,
        step_hours: int | None = None,
        weights: WeightVector | None = None,
        now: dt.datetime | None = None,
    ) -> ForecastResult:
        """Merged timeline for `days` days, cut into `step_hours` windows scored with `weights`."""
        days = days or self.settings.forecast_days
        step_hours = step_hours or self.settings.default_step_hours
        if not 1 <= days <= self.settings.forecast_days:
            raise ValueError(f"days must be in 1..{self.settings.forecast_days}")
        if not 1 <= step_hours <= self.settings.max_step_hours:
            raise ValueError(f"step_hours must be in 1..{self.settings.max_step_hours}")

        result = self.get_timeline(lat, lon, days * 24, now=now)
        result.windows = build(result.timeline, step_hours, lat=lat, lon=lon, weights=weights or DEFAULT_WEIGHTS)
        for window in result.windows:
            self.cache.set(WINDOW_KIND, window.id, window)
        logger.info(
            "Forecast built",
            extra={
                "location_key": result.location_key,
                "windows": len(result.windows),
                "stale": result.stale,
                "degraded": result.degraded_sources,
            },
        )
        return result

    def find_window(
        self,
        window_id: str,
        weights: WeightVector | None = None,
        *,
        now: dt.datetime | None = None,
    ) -> Window:
        """Rebuild a window from its id using the current timeline.

        Windows that have already elapsed (or whose provider is down) are served
        from the registry of recently produced windows.
        """
        key = parse_window_id(window_id)
        weights = weights or DEFAULT_WEIGHTS
        end = key.start + dt.timedelta(hours=key.step_hours)

        rows: List[HourlyRow] = []
        try:
            timeline = self.get_timeline(key.lat, key.lon, self.settings.forecast_days * 24, now=now).timeline
            rows = [r for r in timeline if key.start <= r.timestamp < end]
        except (ProviderUnavailable, InsufficientDataError):
            if self.cache.get_stale(WINDOW_KIND, window_id) is None:
                raise

        if rows:
            window = make_window(rows, lat=key.lat, lon=key.lon, step_hours=key.step_hours, weights=weights)
            # a window already under way keeps its original id and bounds
            tz = rows[0].timestamp.tzinfo
            return window.model_copy(
                update={"id": window_id, "start": key.start.astimezone(tz), "end": end.astimezone(tz)}
            )

        hit = self.cache.get_stale(WINDOW_KIND, window_id)
        if hit is None:
            raise UnknownWindowError(window_id, "no forecast data covers this window")
        return rescore(hit.value, weights)

    def geocode(
        self,
        query: str | None = None,
        lat: float | None = None,
        lon: float | None = None,
    ) -> GeoLocation:
        """Direct (query) or reverse (lat/lon) geocoding; exactly one form must be given."""
        has_coords = lat is not None and lon is not None
        if bool(query) == has_coords or (lat is None) != (lon is None):
            raise ValueError("provide either a query or both lat and lon")
        if query:
            cache_key = ("direct", query.strip().lower())
            return self.cache.get_or_load(GEOCODE_KIND, cache_key, lambda: self.data_source.geocode_direct(query))
        validate_coordinates(lat, lon)
        cache_key = ("reverse", location_key(lat, lon))
        return self.cache.get_or_load(GEOCODE_KIND, cache_key, lambda: self.data_source.geocode_reverse(lat, lon))


def build_forecast_service(settings: config.Settings | None = None) -> ForecastService:
    settings = settings or config.settings
    cache = TTLCache(settings.cache_ttls(), stale_grace_seconds=settings.cache_stale_grace_seconds)
    return ForecastService(build_data_source(settings), cache, settings)
