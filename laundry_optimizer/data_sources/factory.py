"""Factory helpers for choosing a weather data source at startup."""

from __future__ import annotations

from functools import partial

from laundry_optimizer import config
from laundry_optimizer.data_sources.base import CallableWeatherDataSource, WeatherDataSource
from laundry_optimizer.data_sources.openweather_client import (
    fetch_coarse_steps,
    fetch_daily_aggregates,
    fetch_fine_hours,
    geocode_direct,
    geocode_reverse,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/factory")


DEFAULT_SOURCE_NAME = "openweather"


def build_data_source(settings: config.Settings | None = None) -> WeatherDataSource:
    """Instantiate the configured weather data source."""
    settings = settings or config.settings
    source = (settings.weather_source or DEFAULT_SOURCE_NAME).lower()

    if source == "openweather":
        if not settings.openweather_api_key:
            logger.warning("LAUNDRY_OPENWEATHER_API_KEY is empty; provider calls will be rejected")
        logger.info("Using OpenWeather data source", extra={"base_url": settings.openweather_base_url})
        return CallableWeatherDataSource(
            fine=partial(fetch_fine_hours, settings=settings),
            coarse=partial(fetch_coarse_steps, settings=settings),
            daily=partial(fetch_daily_aggregates, settings=settings),
            direct=partial(geocode_direct, settings=settings),
            reverse=partial(geocode_reverse, settings=settings),
        )

    raise ValueError(f"Unknown weather source '{source}'")
