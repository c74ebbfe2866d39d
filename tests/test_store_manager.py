import types
import unittest

import redis

from laundry_optimizer import store_manager
from laundry_optimizer.stores import InMemoryLearningStore, RedisLearningStore, SqlLearningStore


class _PingingRedis:
    def __init__(self, fail=False):
        self.fail = fail

    def ping(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        return True


class TestStoreManager(unittest.TestCase):
    def setUp(self):
        self._orig = {
            "store_backend": store_manager.settings.store_backend,
            "store_redis_url": store_manager.settings.store_redis_url,
            "store_database_url": store_manager.settings.store_database_url,
        }
        self._orig_redis = store_manager.redis
        self._orig_store = store_manager._store

    def tearDown(self):
        for name, value in self._orig.items():
            setattr(store_manager.settings, name, value)
        store_manager.redis = self._orig_redis
        store_manager._store = self._orig_store

    def _fake_redis_module(self, client):
        store_manager.redis = types.SimpleNamespace(
            Redis=types.SimpleNamespace(from_url=lambda url: client),
            RedisError=redis.RedisError,
        )

    def test_memory_backend(self):
        store_manager.settings.store_backend = "memory"
        self.assertIsInstance(store_manager._init_store(), InMemoryLearningStore)

    def test_unknown_backend_falls_back_to_memory(self):
        store_manager.settings.store_backend = "cassandra"
        self.assertIsInstance(store_manager._init_store(), InMemoryLearningStore)

    def test_sql_backend(self):
        store_manager.settings.store_backend = "sql"
        store_manager.settings.store_database_url = "sqlite://"
        self.assertIsInstance(store_manager._init_store(), SqlLearningStore)

    def test_redis_backend(self):
        store_manager.settings.store_backend = "redis"
        store_manager.settings.store_redis_url = "redis://cache:6379/0"
        self._fake_redis_module(_PingingRedis())
        self.assertIsInstance(store_manager._init_store(), RedisLearningStore)

    def test_redis_unreachable_falls_back_to_memory(self):
        store_manager.settings.store_backend = "redis"
        store_manager.settings.store_redis_url = "redis://cache:6379/0"
        self._fake_redis_module(_PingingRedis(fail=True))
        self.assertIsInstance(store_manager._init_store(), InMemoryLearningStore)

    def test_redis_without_url_falls_back_to_memory(self):
        store_manager.settings.store_backend = "redis"
        store_manager.settings.store_redis_url = None
        self.assertIsInstance(store_manager._init_store(), InMemoryLearningStore)

    def test_use_in_memory_store_for_tests_replaces_store(self):
        store = store_manager.use_in_memory_store_for_tests()
        self.assertIs(store_manager.get_store(), store)
        self.assertIsInstance(store, InMemoryLearningStore)


if __name__ == "__main__":
    unittest.main()
