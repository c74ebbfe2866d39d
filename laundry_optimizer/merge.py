"""Merge the fine, coarse and daily feeds into one canonical hourly timeline.

Each hour of the horizon is filled independently by the most precise source
that covers it:

1. fine hourly rows, verbatim, for hours 0..48
2. coarse steps, replicated (exact copies) across their span, for hours 0..120
3. the matching day's daily aggregate, synthesized with a day/night offset

An hour that none of the three can fill fails the merge.
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from typing import Dict, List, Optional

from laundry_optimizer.data_sources.base import (
    CoarseStep,
    DailyAggregate,
    HourlyRow,
    SourceBundle,
)
from laundry_optimizer.errors import InsufficientDataError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="merge")

MAX_HORIZON_HOURS = 168
FINE_MAX_HOUR = 48
COARSE_MAX_HOUR = 120

DAYLIGHT_START_HOUR = 6
DAYLIGHT_END_HOUR = 18  # exclusive

# (temp_c, humidity pp, cloud fraction) applied to synthesized daylight hours; night is mirrored
DIURNAL_ADJUSTMENT = (1.0, -5.0, -0.10)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def floor_to_hour(instant: dt.datetime) -> dt.datetime:
    return instant.replace(minute=0, second=0, microsecond=0)


def _location_tz(sources: SourceBundle) -> dt.tzinfo:
    """The location's fixed UTC offset, taken from whichever feed is present."""
    if sources.fine:
        return sources.fine[0].timestamp.tzinfo or dt.timezone.utc
    if sources.coarse:
        return sources.coarse[0].start.tzinfo or dt.timezone.utc
    if sources.daily:
        return dt.timezone(dt.timedelta(seconds=sources.daily[0].utc_offset_seconds))
    return dt.timezone.utc


def synthesize_from_daily(day: DailyAggregate, timestamp: dt.datetime) -> HourlyRow:
    """Build one hour from a daily aggregate: diurnal offset, rain total spread evenly over 24h."""
    local = timestamp.astimezone(dt.timezone(dt.timedelta(seconds=day.utc_offset_seconds)))
    daylight = DAYLIGHT_START_HOUR <= local.hour < DAYLIGHT_END_HOUR
    sign = 1.0 if daylight else -1.0
    d_temp, d_rh, d_cloud = DIURNAL_ADJUSTMENT
    return HourlyRow(
        timestamp=timestamp,
        temp_c=day.temp_day_c + sign * d_temp,
        relative_humidity_pct=_clamp(day.relative_humidity_pct + sign * d_rh, 0.0, 100.0),
        wind_ms=day.wind_ms,
        cloud_fraction=_clamp(day.cloud_fraction + sign * d_cloud, 0.0, 1.0),
        rain_probability=day.rain_probability,
        rain_mm=day.rain_mm_total / 24.0,
    )


def _coarse_covering(steps: List[CoarseStep], instant: dt.datetime) -> Optional[CoarseStep]:
    for step in steps:
        if step.covers(instant):
            return step
    return None


def merge(
    sources: SourceBundle,
    horizon_hours: int = MAX_HORIZON_HOURS,
    *,
    now: dt.datetime | None = None,
) -> List[HourlyRow]:
    """Return a gap-free hourly timeline of `horizon_hours` rows starting at the current hour.

    Raises InsufficientDataError for the first hour no source can fill.
    """
    if not 1 <= horizon_hours <= MAX_HORIZON_HOURS:
        raise ValueError(f"horizon_hours must be in 1..{MAX_HORIZON_HOURS}, got {horizon_hours}")

    tz = _location_tz(sources)
    now = now or dt.datetime.now(dt.timezone.utc)
    origin = floor_to_hour(now.astimezone(dt.timezone.utc)).astimezone(tz)

    fine_by_epoch: Dict[int, HourlyRow] = {
        int(row.timestamp.timestamp()): row for row in (sources.fine or [])
    }
    coarse = sorted(sources.coarse or [], key=lambda s: s.start)
    daily_by_date: Dict[dt.date, DailyAggregate] = {d.date: d for d in (sources.daily or [])}

    timeline: List[HourlyRow] = []
    tiers: Counter = Counter()
    for h in range(horizon_hours):
        t = origin + dt.timedelta(hours=h)

        fine_row = fine_by_epoch.get(int(t.timestamp())) if h <= FINE_MAX_HOUR else None
        if fine_row is not None:
            timeline.append(fine_row)
            tiers["fine"] += 1
            continue

        step = _coarse_covering(coarse, t) if h <= COARSE_MAX_HOUR else None
        if step is not None:
            timeline.append(step.row_at(t))
            tiers["coarse"] += 1
            continue

        day = None
        if daily_by_date:
            any_day = next(iter(daily_by_date.values()))
            local_date = t.astimezone(dt.timezone(dt.timedelta(seconds=any_day.utc_offset_seconds))).date()
            day = daily_by_date.get(local_date)
        if day is not None:
            timeline.append(synthesize_from_daily(day, t))
            tiers["daily"] += 1
            continue

        raise InsufficientDataError(t)

    logger.debug(
        "Merged timeline",
        extra={"hours": len(timeline), "fine": tiers["fine"], "coarse": tiers["coarse"], "daily": tiers["daily"]},
    )
    return timeline
