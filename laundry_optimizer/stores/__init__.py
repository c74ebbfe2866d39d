"""Learning-state storage backends."""

from .base import LearningStore
from .memory import InMemoryLearningStore
from .redis import RedisLearningStore
from .sql import SqlLearningStore

__all__ = [
    "LearningStore",
    "InMemoryLearningStore",
    "RedisLearningStore",
    "SqlLearningStore",
]
