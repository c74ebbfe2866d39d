"""
AI orchestration: turn numeric artifacts into structured natural-language output.

Each task sends one tagged prompt and parses the single reply strictly against
that task's schema. Failures surface as InvalidAIResponse or WeightTuningRejected;
nothing is ever substituted for a reply that did not validate.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from laundry_optimizer import config
from laundry_optimizer.cache import TTLCache
from laundry_optimizer.domain import (
    DryingPreferences,
    ExplainResult,
    ExplanationCacheEntry,
    FeedbackEvent,
    WeightTuningResult,
    WeightVector,
    Window,
)
from laundry_optimizer.errors import InvalidAIResponse, WeightTuningRejected
from laundry_optimizer.ollama_client import OllamaClient
from laundry_optimizer.prompts import (
    Task,
    build_explain_messages,
    build_prefs_messages,
    build_weight_tuning_messages,
    strip_markdown_fences,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="orchestrator")

EXPLAIN_CACHE_KIND = "explain"

M = TypeVar("M", bound=BaseModel)


def parse_response(task: Task, raw: str, model: Type[M]) -> M:
    """Strip fences, decode JSON and validate against `model`; raise InvalidAIResponse otherwise."""
    text = strip_markdown_fences(raw or "")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("AI reply is not JSON", extra={"task": task.value, "error": str(exc)})
        raise InvalidAIResponse(task.value, f"not JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise InvalidAIResponse(task.value, "expected a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("AI reply failed schema validation", extra={"task": task.value, "errors": exc.error_count()})
        raise InvalidAIResponse(task.value, str(exc)) from exc


def check_delta_bounds(result: WeightTuningResult, max_abs_delta: float) -> None:
    """Re-check every |delta| ourselves; the model's `bounds_respected` flag is not trusted."""
    offending = [
        name
        for name, value in result.delta.model_dump().items()
        if not math.isfinite(value) or abs(value) > max_abs_delta
    ]
    if offending:
        logger.warning(
            "Weight tuning delta out of bounds",
            extra={"offending": offending, "claimed_ok": result.bounds_respected},
        )
        raise WeightTuningRejected(offending, max_abs_delta)
    if not result.bounds_respected:
        logger.info("Model reported bounds_respected=false but all deltas are within bounds")


class AIOrchestrator:
    def __init__(
        self,
        client: OllamaClient,
        cache: TTLCache,
        settings: config.Settings | None = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.settings = settings or config.settings

    def _call(self, task: Task, messages: list[dict], model: Type[M]) -> M:
        raw = self.client.chat(messages, format="json")
        return parse_response(task, raw, model)

    def explain(self, window: Window, weights: WeightVector) -> ExplainResult:
        """EXPLAIN a window for one weight vector.

        The prompt carries the caller's score and weights, so entries are keyed by
        window id plus weights hash and dropped when the window's features change.
        """
        feature_hash = window.features.content_hash()
        weights_hash = weights.content_hash()

        def load() -> ExplanationCacheEntry:
            payload = self._call(Task.EXPLAIN, build_explain_messages(window, weights), ExplainResult)
            expires = self.cache.now() + self.cache.ttl_for(EXPLAIN_CACHE_KIND)
            return ExplanationCacheEntry(
                window_id=window.id,
                feature_vector_hash=feature_hash,
                weights_hash=weights_hash,
                payload=payload,
                expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
            )

        entry = self.cache.get_or_load(
            EXPLAIN_CACHE_KIND,
            (window.id, weights_hash),
            load,
            accept=lambda cached: cached.feature_vector_hash == feature_hash,
        )
        return entry.payload

    def parse_prefs(self, text: str) -> DryingPreferences:
        messages = build_prefs_messages(text, max_chars=self.settings.max_prefs_text_chars)
        return self._call(Task.PREFS, messages, DryingPreferences)

    def tune_weights(
        self,
        weights: WeightVector,
        feedback: Sequence[FeedbackEvent],
        prefs: DryingPreferences | None,
    ) -> WeightTuningResult:
        max_abs_delta = self.settings.weight_tuning_max_delta
        messages = build_weight_tuning_messages(weights, feedback, prefs, max_abs_delta=max_abs_delta)
        result = self._call(Task.WEIGHT_TUNING, messages, WeightTuningResult)
        check_delta_bounds(result, max_abs_delta)
        return result
