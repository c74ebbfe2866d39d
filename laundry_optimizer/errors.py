"""Structured error taxonomy shared by every layer.

Each error carries a machine-readable `kind` and a human `message`; the API layer
turns them into `{"error": kind, "message": message}` bodies.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable


class LaundryError(Exception):
    """Base class for domain errors that propagate to the HTTP boundary."""
    kind = "laundry_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InsufficientDataError(LaundryError):
    """No source covers an hour and no daily aggregate exists for its day."""
    kind = "insufficient_data"

    def __init__(self, hour: datetime) -> None:
        super().__init__(f"No weather source covers {hour.isoformat()}")
        self.hour = hour


class NoSafeWindowsError(LaundryError):
    """Every candidate window was vetoed; a reportable outcome, not a fault."""
    kind = "no_safe_windows"

    def __init__(self, message: str = "No safe drying windows in the forecast horizon") -> None:
        super().__init__(message)


class ProviderUnavailable(LaundryError):
    """An upstream provider failed (transport, status, payload or exhausted 429 budget)."""
    kind = "provider_unavailable"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class InvalidAIResponse(LaundryError):
    """The AI reply could not be parsed as the task's schema."""
    kind = "invalid_ai_json"

    def __init__(self, task: str, detail: str) -> None:
        super().__init__(f"{task} response failed validation: {detail}")
        self.task = task
        self.detail = detail


class WeightTuningRejected(LaundryError):
    """A weight-tuning delta exceeded the allowed per-weight bound."""
    kind = "weight_tuning_rejected"

    def __init__(self, offending: Iterable[str], max_abs_delta: float) -> None:
        self.offending = sorted(offending)
        super().__init__(
            f"Delta for {', '.join(self.offending)} exceeds |{max_abs_delta}|"
        )


class UnknownWindowError(LaundryError):
    """A window id is malformed or no longer maps onto forecast data."""
    kind = "unknown_window"

    def __init__(self, window_id: str, reason: str) -> None:
        super().__init__(f"Unknown window '{window_id}': {reason}")
        self.window_id = window_id
