"""Group a canonical timeline into fixed-width windows and score them."""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import List, Sequence

from laundry_optimizer import scoring
from laundry_optimizer.data_sources.base import HourlyRow
from laundry_optimizer.domain import DEFAULT_WEIGHTS, WeightVector, Window, WindowSummary
from laundry_optimizer.errors import UnknownWindowError

_WINDOW_ID = re.compile(r"^window_(-?\d+\.\d{4})_(-?\d+\.\d{4})_(-?\d+)_(\d+)h$")


@dataclass(frozen=True)
class WindowKey:
    lat: float
    lon: float
    start_epoch: int
    step_hours: int

    @property
    def start(self) -> dt.datetime:
        return dt.datetime.fromtimestamp(self.start_epoch, tz=dt.timezone.utc)


def location_key(lat: float, lon: float) -> str:
    return f"{lat:.4f},{lon:.4f}"


def window_id(lat: float, lon: float, start: dt.datetime, step_hours: int) -> str:
    """Deterministic id: the same location, start and width always give the same id."""
    return f"window_{lat:.4f}_{lon:.4f}_{int(start.timestamp())}_{step_hours}h"


def parse_window_id(value: str) -> WindowKey:
    match = _WINDOW_ID.match(value or "")
    if not match:
        raise UnknownWindowError(value, "malformed id")
    lat, lon, epoch, step = match.groups()
    key = WindowKey(float(lat), float(lon), int(epoch), int(step))
    if key.step_hours < 1:
        raise UnknownWindowError(value, "step must be at least one hour")
    return key


def summarize(rows: Sequence[HourlyRow]) -> WindowSummary:
    """Mean temp/humidity/wind/cloud, max rain probability, summed rain; divides by len(rows)."""
    if not rows:
        raise ValueError("cannot summarize an empty window")
    n = len(rows)
    return WindowSummary(
        temp_c=sum(r.temp_c for r in rows) / n,
        relative_humidity_pct=sum(r.relative_humidity_pct for r in rows) / n,
        wind_ms=sum(r.wind_ms for r in rows) / n,
        cloud_fraction=sum(r.cloud_fraction for r in rows) / n,
        rain_probability=max(r.rain_probability for r in rows),
        rain_mm=sum(r.rain_mm for r in rows),
        hours=n,
    )


def make_window(
    rows: Sequence[HourlyRow],
    *,
    lat: float,
    lon: float,
    step_hours: int,
    weights: WeightVector = DEFAULT_WEIGHTS,
) -> Window:
    start = rows[0].timestamp
    summary = summarize(rows)
    result = scoring.score(summary, weights)
    return Window(
        id=window_id(lat, lon, start, step_hours),
        start=start,
        end=start + dt.timedelta(hours=step_hours),
        step_hours=step_hours,
        summary=summary,
        features=result.features,
        score=result.score,
        unsafe=result.unsafe,
    )


def build(
    timeline: Sequence[HourlyRow],
    step_hours: int = 3,
    *,
    lat: float,
    lon: float,
    weights: WeightVector = DEFAULT_WEIGHTS,
) -> List[Window]:
    """Partition the timeline into contiguous `step_hours` buckets from its first hour.

    A short trailing bucket is still emitted from the rows it has.
    """
    if step_hours < 1:
        raise ValueError("step_hours must be at least 1")
    return [
        make_window(timeline[i:i + step_hours], lat=lat, lon=lon, step_hours=step_hours, weights=weights)
        for i in range(0, len(timeline), step_hours)
    ]


def rescore(window: Window, weights: WeightVector) -> Window:
    """Same window, scored with different weights."""
    result = scoring.score(window.summary, weights)
    return window.model_copy(update={"features": result.features, "score": result.score, "unsafe": result.unsafe})
