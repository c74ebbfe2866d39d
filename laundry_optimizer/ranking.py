"""Top-N selection of safe windows."""

from __future__ import annotations

import datetime as dt
from typing import Iterable, List, Optional

from laundry_optimizer.domain import DryingPreferences, WeightVector, Window
from laundry_optimizer.errors import NoSafeWindowsError
from laundry_optimizer.windows import rescore


def top_n(windows: Iterable[Window], n: int, weights: Optional[WeightVector] = None) -> List[Window]:
    """Safe windows only, best score first, earliest start on ties, at most `n` of them.

    Fewer than `n` safe windows yields a shorter list; none at all raises NoSafeWindowsError.
    """
    if n < 1:
        raise ValueError("n must be at least 1")
    candidates = list(windows)
    if weights is not None:
        candidates = [rescore(w, weights) for w in candidates]
    safe = [w for w in candidates if not w.unsafe]
    if not safe:
        raise NoSafeWindowsError()
    safe.sort(key=lambda w: (-w.score, w.start))
    return safe[:n]


def apply_preferences(
    windows: Iterable[Window],
    prefs: Optional[DryingPreferences],
    *,
    tz: dt.tzinfo | None = None,
) -> List[Window]:
    """Drop windows the user ruled out: avoided local start hours, too cold, too likely to rain."""
    windows = list(windows)
    if prefs is None:
        return windows
    out: List[Window] = []
    avoid = set(prefs.avoid_hours)
    for window in windows:
        start = window.start.astimezone(tz) if tz is not None else window.start
        if start.hour in avoid:
            continue
        if prefs.min_temp_c is not None and window.summary.temp_c < prefs.min_temp_c:
            continue
        if prefs.max_rain_p is not None and window.summary.rain_probability > prefs.max_rain_p:
            continue
        out.append(window)
    return out
