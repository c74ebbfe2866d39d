"""Per-user online learning of the scoring weights.

One feedback event produces one step of L2-regularized online logistic
regression on that user's private weight vector:

    x  = [1, f_temp, f_hum, f_wind, f_cloud, f_rain, f_vpd]
    p  = sigmoid(w . x)
    w' = w - lr * ((p - rating) * x + 2 * reg * w)

Users without personal weights start from a copy of DEFAULT_WEIGHTS, which is
never mutated. Replaying an event double-counts it, so events are recorded in
the store first and applied only when the append reports a new event id.
"""

from __future__ import annotations

import math
import threading
import weakref
from typing import Mapping, Optional

from laundry_optimizer import config, store_manager
from laundry_optimizer.domain import DEFAULT_WEIGHTS, FeatureVector, FeedbackEvent, WeightVector
from laundry_optimizer.stores.base import LearningStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="learning")


def sigmoid(z: float) -> float:
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


def predict(weights: WeightVector, features: FeatureVector) -> float:
    """Probability the user would rate these conditions as a good drying window."""
    z = sum(w * x for w, x in zip(weights.as_list(), features.with_bias()))
    return sigmoid(z)


def update(
    weights: WeightVector,
    features: FeatureVector,
    rating: int,
    *,
    learning_rate: float = 0.05,
    regularization: float = 1e-4,
    bound: Optional[float] = None,
) -> WeightVector:
    """Return new weights after one SGD step; `bound` optionally clamps each weight to [-bound, bound]."""
    if rating not in (0, 1):
        raise ValueError(f"rating must be 0 or 1, got {rating}")
    x = features.with_bias()
    w = weights.as_list()
    err = predict(weights, features) - rating
    new = [wi - learning_rate * (err * xi + 2.0 * regularization * wi) for wi, xi in zip(w, x)]
    if bound is not None:
        new = [max(-bound, min(bound, wi)) for wi in new]
    return WeightVector.from_list(new)


class KeyedLocks:
    """One lock per key, created on demand; serializes writers per key, not globally.

    Locks are held weakly, so a key's lock disappears once no caller references it.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


class LearningEngine:
    """Owns reads and writes of per-user weights."""

    def __init__(self, store: LearningStore | None = None, settings: config.Settings | None = None) -> None:
        self._store = store
        self.settings = settings or config.settings
        self._locks = KeyedLocks()

    @property
    def store(self) -> LearningStore:
        """The explicit store, else whatever store_manager currently provides."""
        return self._store if self._store is not None else store_manager.get_store()

    def weights_for(self, user_id: str) -> WeightVector:
        return self.store.get_weights(user_id) or DEFAULT_WEIGHTS

    def is_personalised(self, user_id: str) -> bool:
        return self.store.get_weights(user_id) is not None

    def apply_feedback(self, event: FeedbackEvent) -> Optional[WeightVector]:
        """Record the event and apply its update; None if the event id was already seen."""
        with self._locks.lock_for(event.user_id):
            if not self.store.append_feedback(event):
                logger.info(
                    "Duplicate feedback event skipped",
                    extra={"user_id": event.user_id, "event_id": event.event_id},
                )
                return None
            current = self.weights_for(event.user_id)
            updated = update(
                current,
                event.features,
                event.rating,
                learning_rate=self.settings.learning_rate,
                regularization=self.settings.learning_regularization,
                bound=self.settings.learning_weight_bound,
            )
            self.store.save_weights(event.user_id, updated)
        logger.info(
            "Weights updated from feedback",
            extra={"user_id": event.user_id, "event_id": event.event_id, "rating": event.rating},
        )
        return updated

    def apply_delta(self, user_id: str, delta: Mapping[str, float]) -> WeightVector:
        """Add an already-validated delta (keys w1..w6) to the user's weights."""
        with self._locks.lock_for(user_id):
            current = self.weights_for(user_id).model_dump()
            for name, value in delta.items():
                if name not in current or name == "w0":
                    raise ValueError(f"cannot tune weight '{name}'")
                current[name] += float(value)
            bound = self.settings.learning_weight_bound
            if bound is not None:
                current = {k: max(-bound, min(bound, v)) for k, v in current.items()}
            updated = WeightVector(**current)
            self.store.save_weights(user_id, updated)
        logger.info("Weights tuned", extra={"user_id": user_id})
        return updated

    def reset(self, user_id: str) -> WeightVector:
        """Forget the user's personal weights; they fall back to the defaults."""
        with self._locks.lock_for(user_id):
            self.store.delete_weights(user_id)
        logger.info("Weights reset", extra={"user_id": user_id})
        return DEFAULT_WEIGHTS
