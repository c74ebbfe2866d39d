"""Weather provider adapters and data source factories."""

from .base import (
    CallableWeatherDataSource,
    CoarseStep,
    DailyAggregate,
    GeoLocation,
    HourlyRow,
    SourceBundle,
    WeatherDataSource,
    validate_coordinates,
)
from .factory import build_data_source
from .http import RetryPolicy, backoff_delay, send_with_backoff

__all__ = [
    "build_data_source",
    "WeatherDataSource",
    "CallableWeatherDataSource",
    "CoarseStep",
    "DailyAggregate",
    "GeoLocation",
    "HourlyRow",
    "SourceBundle",
    "validate_coordinates",
    "RetryPolicy",
    "backoff_delay",
    "send_with_backoff",
]
