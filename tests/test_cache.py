import threading
import time
import unittest

from laundry_optimizer.cache import TTLCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestTTLCache(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = TTLCache({"fine": 60, "daily": 600}, stale_grace_seconds=120, clock=self.clock)

    def test_fresh_then_expired(self):
        self.cache.set("fine", "k", 1)
        self.assertEqual(self.cache.get("fine", "k"), 1)
        self.clock.advance(60)
        self.assertIsNone(self.cache.get("fine", "k"))

    def test_ttl_is_per_kind(self):
        self.cache.set("fine", "k", "f")
        self.cache.set("daily", "k", "d")
        self.clock.advance(61)
        self.assertIsNone(self.cache.get("fine", "k"))
        self.assertEqual(self.cache.get("daily", "k"), "d")
        self.assertEqual(self.cache.ttl_for("unknown"), 300.0)

    def test_stale_entry_available_within_grace(self):
        self.cache.set("fine", "k", "v")
        hit = self.cache.get_stale("fine", "k")
        self.assertFalse(hit.stale)
        self.clock.advance(90)
        hit = self.cache.get_stale("fine", "k")
        self.assertTrue(hit.stale)
        self.assertEqual(hit.value, "v")
        self.assertEqual(hit.stored_at, 1000.0)
        self.clock.advance(100)
        self.assertIsNone(self.cache.get_stale("fine", "k"))

    def test_entries_beyond_grace_are_pruned_on_write(self):
        self.cache.set("fine", "old", 1)
        self.clock.advance(200)
        self.cache.set("fine", "new", 2)
        self.assertEqual(len(self.cache), 1)

    def test_invalidate_and_clear(self):
        self.cache.set("fine", "a", 1)
        self.cache.set("fine", "b", 2)
        self.cache.invalidate("fine", "a")
        self.assertIsNone(self.cache.get("fine", "a"))
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)

    def test_get_or_load_caches_loader_result(self):
        calls = []

        def loader():
            calls.append(1)
            return "value"

        self.assertEqual(self.cache.get_or_load("fine", "k", loader), "value")
        self.assertEqual(self.cache.get_or_load("fine", "k", loader), "value")
        self.assertEqual(len(calls), 1)
        self.clock.advance(61)
        self.cache.get_or_load("fine", "k", loader)
        self.assertEqual(len(calls), 2)

    def test_rejected_value_is_reloaded(self):
        self.cache.set("fine", "k", "old")
        value = self.cache.get_or_load("fine", "k", lambda: "new", accept=lambda v: v != "old")
        self.assertEqual(value, "new")
        self.assertEqual(self.cache.get("fine", "k"), "new")

    def test_loader_error_is_not_cached(self):
        def failing():
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            self.cache.get_or_load("fine", "k", failing)
        self.assertIsNone(self.cache.get_stale("fine", "k"))
        self.assertEqual(self.cache.get_or_load("fine", "k", lambda: 5), 5)


class TestSingleFlight(unittest.TestCase):
    def test_concurrent_callers_share_one_load(self):
        cache = TTLCache({"fine": 60})
        started = threading.Event()
        release = threading.Event()
        calls = []

        def loader():
            calls.append(1)
            started.set()
            release.wait(5)
            return "shared"

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.get_or_load("fine", "k", loader)))
            for _ in range(5)
        ]
        threads[0].start()
        started.wait(5)
        for t in threads[1:]:
            t.start()
        time.sleep(0.05)
        release.set()
        for t in threads:
            t.join(5)

        self.assertEqual(len(calls), 1)
        self.assertEqual(results, ["shared"] * 5)

    def test_waiters_see_leader_error(self):
        cache = TTLCache({"fine": 60})
        started = threading.Event()
        release = threading.Event()
        errors = []

        def loader():
            started.set()
            release.wait(5)
            raise ValueError("provider down")

        def call():
            try:
                cache.get_or_load("fine", "k", loader)
            except ValueError as exc:
                errors.append(str(exc))

        leader = threading.Thread(target=call)
        leader.start()
        started.wait(5)
        waiter = threading.Thread(target=call)
        waiter.start()
        time.sleep(0.05)
        release.set()
        leader.join(5)
        waiter.join(5)

        self.assertEqual(errors, ["provider down", "provider down"])

    def test_waiter_rejecting_leader_value_reloads(self):
        cache = TTLCache({"explain": 60})
        started = threading.Event()
        release = threading.Event()
        results = {}

        def old_loader():
            started.set()
            release.wait(5)
            return {"hash": "old"}

        def new_loader():
            return {"hash": "new"}

        leader = threading.Thread(
            target=lambda: results.__setitem__("leader", cache.get_or_load("explain", "w1", old_loader))
        )
        waiter = threading.Thread(
            target=lambda: results.__setitem__(
                "waiter",
                cache.get_or_load("explain", "w1", new_loader, accept=lambda v: v["hash"] == "new"),
            )
        )
        leader.start()
        started.wait(5)
        waiter.start()
        time.sleep(0.05)
        release.set()
        leader.join(5)
        waiter.join(5)

        self.assertEqual(results["leader"], {"hash": "old"})
        self.assertEqual(results["waiter"], {"hash": "new"})
        self.assertEqual(cache.get("explain", "w1"), {"hash": "new"})


if __name__ == "__main__":
    unittest.main()
