"""Prompt construction for the three structured AI tasks.

Every call carries the same system prompt and exactly one task-tagged JSON user
message. Numbers are always precomputed; the model is told never to recompute them.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Sequence

from laundry_optimizer.domain import DryingPreferences, FeedbackEvent, WeightVector, Window


class Task(str, Enum):
    EXPLAIN = "EXPLAIN"
    PREFS = "PREFS"
    WEIGHT_TUNING = "WEIGHT_TUNING"


SYSTEM_PROMPT = """You are the assistant of a laundry drying-window optimizer. All numbers are precomputed.
Never recompute scores, features or weights; use the values you are given.

Scoring model (metric units):
  f_temp  = clamp((temp_c - 15) / 15, 0, 1)
  f_hum   = 1 - (rh/100) ** 0.7
  f_wind  = clamp(wind_ms / 6, 0, 1)
  f_cloud = 1 - clamp(cloud_fraction, 0, 1)
  f_rain  = 1 - clamp(rain_probability, 0, 1)
  es      = 0.6108 * exp(17.27*temp_c / (temp_c + 237.3))
  vpd_kpa = max(es - es*(rh/100), 0)
  f_vpd   = clamp(vpd_kpa / 2.5, 0, 1)
  score   = w0 + w1*f_temp + w2*f_hum + w3*f_wind + w4*f_cloud + w5*f_rain + w6*f_vpd
Veto: rain_probability > 0.50 or rain_mm > 0.2 makes the window unsafe with score -1.0.
Soft penalties: temp_c < 18 subtracts 0.15; wind_ms < 1 subtracts 0.10.

Each user message is a JSON object whose "task" field is one of EXPLAIN, PREFS, WEIGHT_TUNING.
Reply with a single JSON object matching that task's schema exactly. No other keys, no prose, no Markdown.

EXPLAIN -> {"rationale": string (at most 2 sentences), "tip": string (1 sentence),
            "verdict": "great" | "good" | "ok" | "avoid", "reasons": [at most 3 short strings, 80 chars max]}
PREFS -> {"avoid_hours": [integers 0-23], "min_temp_c": number or omitted, "max_rain_p": number 0-1 or omitted,
          "prioritize": subset of ["wind", "sun", "warmth", "low_humidity"]}
WEIGHT_TUNING -> {"delta": {"w1": number, "w2": number, "w3": number, "w4": number, "w5": number, "w6": number},
                  "justification": string (at most 2 sentences), "bounds_respected": boolean}
For WEIGHT_TUNING every |delta| must be at most max_abs_delta. An unsafe window always gets verdict "avoid"."""


def strip_markdown_fences(text: str) -> str:
    """Remove surrounding Markdown code fences from text."""
    if not text:
        return text
    t = text.strip()
    if not t.startswith("```"):
        return t
    lines = t.splitlines()
    if lines and lines[0].strip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def _messages(task: Task, body: dict) -> list[dict]:
    user = {"task": task.value, **body}
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": json.dumps(user, default=str)},
    ]


def build_explain_messages(window: Window, weights: WeightVector) -> list[dict]:
    return _messages(
        Task.EXPLAIN,
        {
            "window_id": window.id,
            "start": window.start.isoformat(),
            "end": window.end.isoformat(),
            "summary": window.summary.model_dump(),
            "features": window.features.model_dump(),
            "score": round(window.score, 4),
            "unsafe": window.unsafe,
            "weights": weights.model_dump(),
        },
    )


def build_prefs_messages(text: str, *, max_chars: int) -> list[dict]:
    return _messages(Task.PREFS, {"text": text[:max_chars]})


def build_weight_tuning_messages(
    weights: WeightVector,
    feedback: Sequence[FeedbackEvent],
    prefs: DryingPreferences | None,
    *,
    max_abs_delta: float,
) -> list[dict]:
    return _messages(
        Task.WEIGHT_TUNING,
        {
            "weights": weights.model_dump(),
            "recent_feedback": [
                {"features": e.features.model_dump(), "rating": e.rating} for e in feedback
            ],
            "prefs": prefs.model_dump(mode="json") if prefs else None,
            "max_abs_delta": max_abs_delta,
        },
    )
