"""Shared protocol for learning-state storage backends."""

from typing import List, Optional, Protocol

from laundry_optimizer.domain import DryingPreferences, FeedbackEvent, WeightVector


class LearningStore(Protocol):
    """Protocol for per-user weights, the feedback log and stored preferences."""

    def get_weights(self, user_id: str) -> Optional[WeightVector]:
        """Return the user's personal weights, or None if they have none yet."""

    def save_weights(self, user_id: str, weights: WeightVector) -> None:
        """Replace the user's weight snapshot."""

    def delete_weights(self, user_id: str) -> None:
        """Drop the user's personal weights without raising if absent."""

    def append_feedback(self, event: FeedbackEvent) -> bool:
        """Append to the feedback log; False if this event id was already recorded."""

    def list_feedback(self, user_id: str, limit: int = 20) -> List[FeedbackEvent]:
        """Most recent feedback first."""

    def get_prefs(self, user_id: str) -> Optional[DryingPreferences]:
        """Return stored preferences, or None."""

    def save_prefs(self, user_id: str, prefs: DryingPreferences) -> None:
        """Replace stored preferences."""

    def clear(self) -> None:
        """Remove everything (dev/testing)."""
