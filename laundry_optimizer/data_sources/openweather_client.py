"""Helpers for fetching forecasts and geocoding results from the OpenWeather APIs.

Three weather feeds are normalized here:

- fine:   One Call `hourly` (48 hourly rows)
- coarse: 5-day / 3-hour forecast `list`
- daily:  One Call `daily` (8 daily aggregates)

All requests ask for metric units. Timestamps are rebuilt from the epoch `dt`
fields in the location's fixed UTC offset reported by the provider.
"""
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List

import requests

from laundry_optimizer import config
from laundry_optimizer.data_sources.base import (
    CoarseStep,
    DailyAggregate,
    GeoLocation,
    HourlyRow,
    validate_coordinates,
)
from laundry_optimizer.data_sources.http import RetryPolicy, send_with_backoff
from laundry_optimizer.errors import ProviderUnavailable
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="openweather_client")

PROVIDER = "openweather"
USER_AGENT = "LaundryDayOptimizer/1.0"
COARSE_STEP_HOURS = 3

session = requests.Session()
session.headers.update({"User-Agent": USER_AGENT})


def _get_json(path: str, params: Dict[str, Any], *, settings: config.Settings, context: str) -> Any:
    """GET `path` with the API key appended and return the decoded JSON body."""
    url = f"{settings.openweather_base_url}{path}"
    query = dict(params)
    query["appid"] = settings.openweather_api_key
    logger.info("Fetching from OpenWeather", extra={"context": context, "path": path})

    resp = send_with_backoff(
        lambda: session.get(url, params=query, timeout=settings.http_timeout_seconds),
        provider=PROVIDER,
        policy=RetryPolicy.from_settings(settings),
    )
    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderUnavailable(PROVIDER, f"{context}: response was not JSON") from exc
    logger.info("Fetched from OpenWeather", extra={"context": context, "status": resp.status_code})
    return data


def _tz(offset_seconds: int) -> dt.timezone:
    return dt.timezone(dt.timedelta(seconds=int(offset_seconds)))


def _from_epoch(epoch: int, tz: dt.timezone) -> dt.datetime:
    return dt.datetime.fromtimestamp(int(epoch), tz=tz)


def parse_onecall_hourly(data: Dict[str, Any]) -> List[HourlyRow]:
    """Map One Call `hourly` entries onto HourlyRow (clouds % -> fraction, rain from `rain.1h`)."""
    tz = _tz(data.get("timezone_offset", 0))
    out: List[HourlyRow] = []
    for item in data["hourly"]:
        rain = item.get("rain") or {}
        out.append(
            HourlyRow(
                timestamp=_from_epoch(item["dt"], tz),
                temp_c=float(item["temp"]),
                relative_humidity_pct=float(item["humidity"]),
                wind_ms=float(item["wind_speed"]),
                cloud_fraction=float(item["clouds"]) / 100.0,
                rain_probability=float(item.get("pop", 0.0)),
                rain_mm=float(rain.get("1h", 0.0)),
            )
        )
    return out


def parse_forecast3h(data: Dict[str, Any]) -> List[CoarseStep]:
    """Map 3-hour forecast `list` entries onto CoarseStep; the 3h rain total becomes a per-hour amount."""
    tz = _tz((data.get("city") or {}).get("timezone", 0))
    out: List[CoarseStep] = []
    for item in data["list"]:
        rain = item.get("rain") or {}
        out.append(
            CoarseStep(
                start=_from_epoch(item["dt"], tz),
                step_hours=COARSE_STEP_HOURS,
                temp_c=float(item["main"]["temp"]),
                relative_humidity_pct=float(item["main"]["humidity"]),
                wind_ms=float(item["wind"]["speed"]),
                cloud_fraction=float(item["clouds"]["all"]) / 100.0,
                rain_probability=float(item.get("pop", 0.0)),
                rain_mm=float(rain.get("3h", 0.0)) / COARSE_STEP_HOURS,
            )
        )
    return out


def parse_onecall_daily(data: Dict[str, Any]) -> List[DailyAggregate]:
    """Map One Call `daily` entries onto DailyAggregate keyed by local calendar date."""
    offset = int(data.get("timezone_offset", 0))
    tz = _tz(offset)
    out: List[DailyAggregate] = []
    for item in data["daily"]:
        out.append(
            DailyAggregate(
                date=_from_epoch(item["dt"], tz).date(),
                utc_offset_seconds=offset,
                temp_day_c=float(item["temp"]["day"]),
                relative_humidity_pct=float(item["humidity"]),
                wind_ms=float(item["wind_speed"]),
                cloud_fraction=float(item["clouds"]) / 100.0,
                rain_probability=float(item.get("pop", 0.0)),
                rain_mm_total=float(item.get("rain") or 0.0),
            )
        )
    return out


def _parse(parser, data: Any, context: str):
    try:
        return parser(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise ProviderUnavailable(PROVIDER, f"{context}: malformed payload ({exc!r})") from exc


def fetch_fine_hours(lat: float, lon: float, *, settings: config.Settings | None = None) -> List[HourlyRow]:
    """Fetch the fine-grained hourly feed (One Call hourly, 48 hours)."""
    settings = settings or config.settings
    validate_coordinates(lat, lon)
    params = {"lat": lat, "lon": lon, "units": "metric", "exclude": "current,minutely,daily,alerts"}
    data = _get_json(settings.openweather_onecall_path, params, settings=settings, context="onecall_hourly")
    return _parse(parse_onecall_hourly, data, "onecall_hourly")


def fetch_coarse_steps(lat: float, lon: float, *, settings: config.Settings | None = None) -> List[CoarseStep]:
    """Fetch the coarse 3-hour feed (5 days)."""
    settings = settings or config.settings
    validate_coordinates(lat, lon)
    params = {"lat": lat, "lon": lon, "units": "metric"}
    data = _get_json(settings.openweather_forecast3h_path, params, settings=settings, context="forecast3h")
    return _parse(parse_forecast3h, data, "forecast3h")


def fetch_daily_aggregates(lat: float, lon: float, *, settings: config.Settings | None = None) -> List[DailyAggregate]:
    """Fetch the daily feed (One Call daily, 8 days)."""
    settings = settings or config.settings
    validate_coordinates(lat, lon)
    params = {"lat": lat, "lon": lon, "units": "metric", "exclude": "current,minutely,hourly,alerts"}
    data = _get_json(settings.openweather_onecall_path, params, settings=settings, context="onecall_daily")
    return _parse(parse_onecall_daily, data, "onecall_daily")


def _geo_from_item(item: Dict[str, Any]) -> GeoLocation:
    return GeoLocation(
        lat=float(item["lat"]),
        lon=float(item["lon"]),
        name=str(item.get("name") or ""),
        country=str(item.get("country") or ""),
    )


def geocode_direct(query: str, *, settings: config.Settings | None = None) -> GeoLocation:
    """Resolve a free-text place name; raises LookupError when nothing matches."""
    settings = settings or config.settings
    data = _get_json(
        settings.openweather_geocode_direct_path,
        {"q": query, "limit": 1},
        settings=settings,
        context="geocode_direct",
    )
    if not data:
        raise LookupError(f"No location found for '{query}'")
    return _parse(lambda d: _geo_from_item(d[0]), data, "geocode_direct")


def geocode_reverse(lat: float, lon: float, *, settings: config.Settings | None = None) -> GeoLocation:
    """Resolve coordinates to the nearest named place; raises LookupError when nothing matches."""
    settings = settings or config.settings
    validate_coordinates(lat, lon)
    data = _get_json(
        settings.openweather_geocode_reverse_path,
        {"lat": lat, "lon": lon, "limit": 1},
        settings=settings,
        context="geocode_reverse",
    )
    if not data:
        raise LookupError(f"No location found near ({lat}, {lon})")
    return _parse(lambda d: _geo_from_item(d[0]), data, "geocode_reverse")
