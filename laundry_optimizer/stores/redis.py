"""Redis-backed learning store. Values are JSON documents under prefixed keys."""

from typing import List, Optional

from laundry_optimizer.domain import DryingPreferences, FeedbackEvent, WeightVector
from laundry_optimizer.stores.base import LearningStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="stores/redis_learning_store")


class RedisLearningStore(LearningStore):
    """Weights and prefs as JSON strings; feedback as a per-user list plus a per-user set of seen event ids."""

    def __init__(self, client, prefix: str = "laundry:") -> None:
        logger.debug("Initializing RedisLearningStore")
        self.client = client
        self.prefix = prefix

    def _key(self, *parts: str) -> str:
        return self.prefix + ":".join(parts)

    @staticmethod
    def _decode(raw) -> str:
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    def get_weights(self, user_id: str) -> Optional[WeightVector]:
        raw = self.client.get(self._key("weights", user_id))
        if not raw:
            return None
        return WeightVector.model_validate_json(self._decode(raw))

    def save_weights(self, user_id: str, weights: WeightVector) -> None:
        self.client.set(self._key("weights", user_id), weights.model_dump_json())

    def delete_weights(self, user_id: str) -> None:
        self.client.delete(self._key("weights", user_id))

    def append_feedback(self, event: FeedbackEvent) -> bool:
        # SADD returns 0 when the member already exists, which makes the append at-most-once
        if not self.client.sadd(self._key("feedback_ids", event.user_id), event.event_id):
            return False
        self.client.lpush(self._key("feedback", event.user_id), event.model_dump_json())
        return True

    def list_feedback(self, user_id: str, limit: int = 20) -> List[FeedbackEvent]:
        if limit <= 0:
            return []
        raw_items = self.client.lrange(self._key("feedback", user_id), 0, limit - 1)
        return [FeedbackEvent.model_validate_json(self._decode(raw)) for raw in raw_items]

    def get_prefs(self, user_id: str) -> Optional[DryingPreferences]:
        raw = self.client.get(self._key("prefs", user_id))
        if not raw:
            return None
        return DryingPreferences.model_validate_json(self._decode(raw))

    def save_prefs(self, user_id: str, prefs: DryingPreferences) -> None:
        self.client.set(self._key("prefs", user_id), prefs.model_dump_json())

    def clear(self) -> None:
        """Best-effort clear for all keys under the configured prefix."""
        for key in self.client.scan_iter(f"{self.prefix}*"):
            self.client.delete(key)
