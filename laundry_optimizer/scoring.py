"""Deterministic drying score for a window summary.

Features (metric inputs, each clamped into [0, 1]):

    f_temp  = clamp((temp_c - 15) / 15)
    f_hum   = 1 - (rh / 100) ** 0.7
    f_wind  = clamp(wind_ms / 6)
    f_cloud = 1 - clamp(cloud_fraction)
    f_rain  = 1 - clamp(rain_probability)
    f_vpd   = clamp(vpd_kpa / 2.5), vpd from the Tetens saturation pressure

Rain above the veto thresholds forces score -1.0 and unsafe=True. Otherwise the
score is the linear model plus additive soft penalties for cool or still air.
"""

from __future__ import annotations

import math
from typing import NamedTuple

from laundry_optimizer.domain import DEFAULT_WEIGHTS, FeatureVector, WeightVector, WindowSummary

VETO_RAIN_PROBABILITY = 0.50
VETO_RAIN_MM = 0.2
VETO_SCORE = -1.0

COOL_TEMP_C = 18.0
COOL_PENALTY = 0.15
STILL_WIND_MS = 1.0
STILL_PENALTY = 0.10


class ScoreResult(NamedTuple):
    features: FeatureVector
    score: float
    unsafe: bool


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def vapor_pressure_deficit_kpa(temp_c: float, rh_pct: float) -> float:
    es = 0.6108 * math.exp(17.27 * temp_c / (temp_c + 237.3))
    e = es * (rh_pct / 100.0)
    return max(es - e, 0.0)


def compute_features(summary: WindowSummary) -> FeatureVector:
    rh = max(0.0, min(100.0, summary.relative_humidity_pct))
    return FeatureVector(
        f_temp=_clamp01((summary.temp_c - 15.0) / 15.0),
        f_hum=_clamp01(1.0 - (rh / 100.0) ** 0.7),
        f_wind=_clamp01(summary.wind_ms / 6.0),
        f_cloud=1.0 - _clamp01(summary.cloud_fraction),
        f_rain=1.0 - _clamp01(summary.rain_probability),
        f_vpd=_clamp01(vapor_pressure_deficit_kpa(summary.temp_c, rh) / 2.5),
    )


def is_vetoed(summary: WindowSummary) -> bool:
    return summary.rain_probability > VETO_RAIN_PROBABILITY or summary.rain_mm > VETO_RAIN_MM


def linear_score(features: FeatureVector, weights: WeightVector) -> float:
    """w . x with x = [1, f_temp, ..., f_vpd]."""
    return sum(w * x for w, x in zip(weights.as_list(), features.with_bias()))


def score(summary: WindowSummary, weights: WeightVector = DEFAULT_WEIGHTS) -> ScoreResult:
    """Pure function of (summary, weights): features, score and veto flag."""
    features = compute_features(summary)
    if is_vetoed(summary):
        return ScoreResult(features, VETO_SCORE, True)

    value = linear_score(features, weights)
    if summary.temp_c < COOL_TEMP_C:
        value -= COOL_PENALTY
    if summary.wind_ms < STILL_WIND_MS:
        value -= STILL_PENALTY
    return ScoreResult(features, value, False)
