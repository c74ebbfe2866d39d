"""In-memory learning store, intended for development and tests."""

import threading
from typing import Dict, List, Optional, Set

from laundry_optimizer.domain import DryingPreferences, FeedbackEvent, WeightVector
from laundry_optimizer.stores.base import LearningStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="stores/in_memory_learning_store")


class InMemoryLearningStore(LearningStore):
    """Thread-safe dict-backed store (dev/test)."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryLearningStore")
        self._weights: Dict[str, WeightVector] = {}
        self._feedback: Dict[str, List[FeedbackEvent]] = {}
        self._event_ids: Dict[str, Set[str]] = {}
        self._prefs: Dict[str, DryingPreferences] = {}
        self._lock = threading.Lock()

    def get_weights(self, user_id: str) -> Optional[WeightVector]:
        with self._lock:
            return self._weights.get(user_id)

    def save_weights(self, user_id: str, weights: WeightVector) -> None:
        with self._lock:
            self._weights[user_id] = weights

    def delete_weights(self, user_id: str) -> None:
        with self._lock:
            self._weights.pop(user_id, None)

    def append_feedback(self, event: FeedbackEvent) -> bool:
        with self._lock:
            seen = self._event_ids.setdefault(event.user_id, set())
            if event.event_id in seen:
                return False
            seen.add(event.event_id)
            self._feedback.setdefault(event.user_id, []).append(event)
            return True

    def list_feedback(self, user_id: str, limit: int = 20) -> List[FeedbackEvent]:
        with self._lock:
            events = list(self._feedback.get(user_id, []))
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    def get_prefs(self, user_id: str) -> Optional[DryingPreferences]:
        with self._lock:
            return self._prefs.get(user_id)

    def save_prefs(self, user_id: str, prefs: DryingPreferences) -> None:
        with self._lock:
            self._prefs[user_id] = prefs

    def clear(self) -> None:
        with self._lock:
            self._weights.clear()
            self._feedback.clear()
            self._event_ids.clear()
            self._prefs.clear()
