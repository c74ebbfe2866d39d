"""Domain vocabulary and strict schemas for drying-window scoring.

This module defines the stable contract between the numeric engine
(merge -> windows -> scoring -> learning) and the AI orchestrator: enums,
feature and weight vectors, and the Pydantic models for the three structured
AI outputs. No scoring logic lives here.
"""

from __future__ import annotations

import hashlib
import json
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, field_validator


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid")


class _FrozenModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, allow_inf_nan=False)


class _AIOutputModel(BaseModel):
    """Base for model replies: no extra keys, no NaN or infinity. Scalar fields use Strict* types."""

    model_config = ConfigDict(extra="forbid", allow_inf_nan=False)


_SENTENCE_END = re.compile(r"[.!?]+(?=\s|$)")


def count_sentences(text: str) -> int:
    """Count sentences by `.`, `!` and `?` terminators; a trailing fragment counts as one."""
    parts = [p for p in _SENTENCE_END.split(text.strip()) if p.strip()]
    return len(parts)


def _max_sentences(value: str, limit: int, field: str) -> str:
    n = count_sentences(value)
    if n > limit:
        raise ValueError(f"{field} must be at most {limit} sentence(s), got {n}")
    return value


def _sha256_of(model: BaseModel) -> str:
    canonical = json.dumps(model.model_dump(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class Verdict(str, Enum):
    GREAT = "great"
    GOOD = "good"
    OK = "ok"
    AVOID = "avoid"


class DryingFactor(str, Enum):
    """Factors a user may ask to prioritize."""
    WIND = "wind"
    SUN = "sun"
    WARMTH = "warmth"
    LOW_HUMIDITY = "low_humidity"


class WindowSummary(_FrozenModel):
    """Aggregate of the hourly rows inside one window."""
    temp_c: float
    relative_humidity_pct: float
    wind_ms: float
    cloud_fraction: float
    rain_probability: float  # max over the window
    rain_mm: float  # sum over the window
    hours: int = Field(ge=1)


class FeatureVector(_FrozenModel):
    """Six normalized drying signals, each in [0, 1]."""
    f_temp: float = Field(ge=0.0, le=1.0)
    f_hum: float = Field(ge=0.0, le=1.0)
    f_wind: float = Field(ge=0.0, le=1.0)
    f_cloud: float = Field(ge=0.0, le=1.0)
    f_rain: float = Field(ge=0.0, le=1.0)
    f_vpd: float = Field(ge=0.0, le=1.0)

    def as_list(self) -> List[float]:
        return [self.f_temp, self.f_hum, self.f_wind, self.f_cloud, self.f_rain, self.f_vpd]

    def with_bias(self) -> List[float]:
        """Design vector x = [1, f_temp, ..., f_vpd]."""
        return [1.0, *self.as_list()]

    def content_hash(self) -> str:
        """SHA-256 over the canonical JSON form; changes whenever any feature changes."""
        return _sha256_of(self)


WEIGHT_NAMES = ("w0", "w1", "w2", "w3", "w4", "w5", "w6")


class WeightVector(_FrozenModel):
    """Linear model weights: w0 is the bias, w1..w6 pair with the features in order."""
    w0: float
    w1: float
    w2: float
    w3: float
    w4: float
    w5: float
    w6: float

    def as_list(self) -> List[float]:
        return [getattr(self, name) for name in WEIGHT_NAMES]

    @classmethod
    def from_list(cls, values: Sequence[float]) -> "WeightVector":
        if len(values) != len(WEIGHT_NAMES):
            raise ValueError(f"Expected {len(WEIGHT_NAMES)} weights, got {len(values)}")
        return cls(**{name: float(v) for name, v in zip(WEIGHT_NAMES, values)})

    def content_hash(self) -> str:
        return _sha256_of(self)


DEFAULT_WEIGHTS = WeightVector(w0=0.0, w1=0.25, w2=0.25, w3=0.20, w4=0.10, w5=0.15, w6=0.25)


class Window(_StrictBaseModel):
    """A scored drying window; recomputed on every forecast refresh."""
    id: str
    start: datetime
    end: datetime
    step_hours: int
    summary: WindowSummary
    features: FeatureVector
    score: float
    unsafe: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedbackEvent(_StrictBaseModel):
    """One rating of a window by a user; append-only once recorded."""
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    window_id: str
    rating: Literal[0, 1]
    timestamp: datetime = Field(default_factory=_utcnow)
    note: str | None = None
    features: FeatureVector
    predicted_score: float | None = None


# ---------------------------------------------------------------------------
# Structured AI outputs. Each task has exactly one schema; anything else fails.
# ---------------------------------------------------------------------------

MAX_REASONS = 3
MAX_REASON_CHARS = 80


class ExplainResult(_AIOutputModel):
    """EXPLAIN task output."""
    rationale: StrictStr = Field(min_length=1)
    tip: StrictStr = Field(min_length=1)
    verdict: Verdict
    reasons: List[StrictStr] = Field(default_factory=list, max_length=MAX_REASONS)

    @field_validator("rationale")
    @classmethod
    def _rationale_two_sentences(cls, v: str) -> str:
        return _max_sentences(v, 2, "rationale")

    @field_validator("tip")
    @classmethod
    def _tip_one_sentence(cls, v: str) -> str:
        return _max_sentences(v, 1, "tip")

    @field_validator("reasons")
    @classmethod
    def _short_reasons(cls, v: List[str]) -> List[str]:
        for reason in v:
            if not reason.strip() or len(reason) > MAX_REASON_CHARS:
                raise ValueError(f"each reason must be 1..{MAX_REASON_CHARS} characters")
        return v


class DryingPreferences(_AIOutputModel):
    """PREFS task output, persisted per user and applied as ranking filters."""
    avoid_hours: List[StrictInt] = Field(default_factory=list)
    min_temp_c: StrictFloat | None = None
    max_rain_p: StrictFloat | None = Field(default=None, ge=0.0, le=1.0)
    prioritize: List[DryingFactor] = Field(default_factory=list)

    @field_validator("avoid_hours")
    @classmethod
    def _hours_of_day(cls, v: List[int]) -> List[int]:
        for hour in v:
            if not 0 <= hour <= 23:
                raise ValueError(f"avoid_hours entries must be in 0..23, got {hour}")
        return sorted(set(v))

    @field_validator("prioritize")
    @classmethod
    def _unique_factors(cls, v: List[DryingFactor]) -> List[DryingFactor]:
        seen: List[DryingFactor] = []
        for factor in v:
            if factor not in seen:
                seen.append(factor)
        return seen


class WeightDelta(_AIOutputModel):
    """Proposed additive change to w1..w6 (the bias is never tuned)."""
    w1: StrictFloat
    w2: StrictFloat
    w3: StrictFloat
    w4: StrictFloat
    w5: StrictFloat
    w6: StrictFloat


class WeightTuningResult(_AIOutputModel):
    """WEIGHT_TUNING task output."""
    delta: WeightDelta
    justification: StrictStr = Field(min_length=1)
    bounds_respected: StrictBool

    @field_validator("justification")
    @classmethod
    def _justification_two_sentences(cls, v: str) -> str:
        return _max_sentences(v, 2, "justification")


class ExplanationCacheEntry(_StrictBaseModel):
    """Validated EXPLAIN payload tied to the exact features it was produced for."""
    window_id: str
    feature_vector_hash: str
    weights_hash: str
    payload: ExplainResult
    expires_at: datetime
