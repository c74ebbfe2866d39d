"""Store facade: picks the configured learning-store backend once per process."""

import redis
from sqlalchemy.exc import SQLAlchemyError

from laundry_optimizer.config import settings
from laundry_optimizer.stores import (
    InMemoryLearningStore,
    LearningStore,
    RedisLearningStore,
    SqlLearningStore,
)
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="store_manager")


def _init_store() -> LearningStore:
    """Initialize the backing learning store based on configuration."""
    backend = (settings.store_backend or "memory").lower()
    logger.debug(f"Initializing learning store: backend='{backend}'")
    if backend == "redis":
        if not settings.store_redis_url:
            logger.warning("store_backend=redis but LAUNDRY_STORE_REDIS_URL is unset; using memory")
            return InMemoryLearningStore()
        try:
            client = redis.Redis.from_url(settings.store_redis_url)
            client.ping()
            logger.info("Using RedisLearningStore", extra={"redis_url": mask_db_url(settings.store_redis_url)})
            return RedisLearningStore(client)
        except redis.RedisError as exc:
            logger.warning("Falling back to InMemoryLearningStore (Redis unavailable)", extra={"error": str(exc)})
            return InMemoryLearningStore()
    if backend == "sql":
        try:
            return SqlLearningStore.from_url(settings.store_database_url)
        except SQLAlchemyError as exc:
            logger.warning(
                "Falling back to InMemoryLearningStore (database unavailable)",
                extra={"error": str(exc), "db_url": mask_db_url(settings.store_database_url)},
            )
            return InMemoryLearningStore()
    if backend != "memory":
        logger.warning(f"Unknown store backend '{backend}'; using memory")
    return InMemoryLearningStore()


_store: LearningStore = _init_store()


def get_store() -> LearningStore:
    return _store


def use_in_memory_store_for_tests() -> LearningStore:
    """Override store for tests to ensure isolation and determinism."""
    global _store
    _store = InMemoryLearningStore()
    return _store
