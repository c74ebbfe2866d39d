import datetime as dt
import json
import unittest
from collections import Counter

from fastapi.testclient import TestClient

from laundry_optimizer.cache import TTLCache
from laundry_optimizer.config import Settings
from laundry_optimizer.data_sources.base import CoarseStep, DailyAggregate, GeoLocation, HourlyRow
from laundry_optimizer.errors import ProviderUnavailable
from laundry_optimizer.forecast_service import ForecastService
from laundry_optimizer.learning import LearningEngine
from laundry_optimizer.main import app as fastapi_app
from laundry_optimizer.ollama_health import OllamaStatus
from laundry_optimizer.orchestrator import AIOrchestrator
from laundry_optimizer.stores import InMemoryLearningStore

EXPLAIN_REPLY = {
    "rationale": "Warm, dry air with a light breeze.",
    "tip": "Space items out on the line.",
    "verdict": "good",
    "reasons": ["warm", "dry"],
}
TUNING_REPLY = {
    "delta": {"w1": 0.0, "w2": 0.0, "w3": 0.04, "w4": 0.0, "w5": 0.0, "w6": -0.01},
    "justification": "Breezy windows were rated well.",
    "bounds_respected": True,
}


class LiveClockSource:
    """Fake provider whose feeds are anchored just before the real current hour."""

    def __init__(self):
        now = dt.datetime.now(dt.timezone.utc).replace(minute=0, second=0, microsecond=0)
        self.anchor = now - dt.timedelta(hours=1)
        self.calls = Counter()
        self.failing = set()
        self.rain_probability = 0.05

    def _check(self, kind):
        self.calls[kind] += 1
        if kind in self.failing:
            raise ProviderUnavailable("openweather", f"{kind} down")

    def fetch_fine(self, lat, lon):
        self._check("fine")
        return [
            HourlyRow(self.anchor + dt.timedelta(hours=h), 24.0 + h % 3, 45.0, 3.0, 0.2, self.rain_probability, 0.0)
            for h in range(50)
        ]

    def fetch_coarse(self, lat, lon):
        self._check("coarse")
        return [
            CoarseStep(self.anchor + dt.timedelta(hours=3 * i), 3, 19.0, 60.0, 2.0, 0.4, self.rain_probability, 0.0)
            for i in range(42)
        ]

    def fetch_daily(self, lat, lon):
        self._check("daily")
        first = self.anchor.date() - dt.timedelta(days=1)
        return [
            DailyAggregate(first + dt.timedelta(days=i), 0, 20.0, 60.0, 2.5, 0.5, self.rain_probability, 0.0)
            for i in range(10)
        ]

    def geocode_direct(self, query):
        if query == "Atlantis":
            raise LookupError("No location found for 'Atlantis'")
        return GeoLocation(51.5073, -0.1276, "London", "GB")

    def geocode_reverse(self, lat, lon):
        return GeoLocation(lat, lon, "Westminster", "GB")


class FakeAIClient:
    def __init__(self):
        self.replies = []

    def chat(self, messages, *, format="json"):
        reply = self.replies.pop(0)
        return reply if isinstance(reply, str) else json.dumps(reply)


class TestApi(unittest.TestCase):
    def setUp(self):
        import laundry_optimizer.api as api_mod

        self.api_mod = api_mod
        self._orig = {
            "forecast_service": api_mod.forecast_service,
            "learning_engine": api_mod.learning_engine,
            "orchestrator": api_mod.orchestrator,
            "probe_ollama": api_mod.probe_ollama,
        }
        self._orig_api_key = api_mod.settings.api_key
        api_mod.settings.api_key = None

        settings = Settings()
        cache = TTLCache(settings.cache_ttls(), stale_grace_seconds=settings.cache_stale_grace_seconds)
        self.source = LiveClockSource()
        self.ai = FakeAIClient()
        self.store = InMemoryLearningStore()
        api_mod.forecast_service = ForecastService(self.source, cache, settings)
        api_mod.learning_engine = LearningEngine(self.store, settings)
        api_mod.orchestrator = AIOrchestrator(self.ai, cache, settings)

        self.client = TestClient(fastapi_app)
        self.params = {"lat": 51.5, "lon": -0.12}

    def tearDown(self):
        self.api_mod.forecast_service.executor.shutdown(wait=True)
        for name, value in self._orig.items():
            setattr(self.api_mod, name, value)
        self.api_mod.settings.api_key = self._orig_api_key

    def _first_window_id(self):
        resp = self.client.get("/v1/drying/windows", params={**self.params, "days": 1})
        self.assertEqual(resp.status_code, 200)
        return resp.json()["windows"][0]["id"]

    def test_drying_windows(self):
        resp = self.client.get("/v1/drying/windows", params={**self.params, "days": 2, "step_hours": 3})
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(len(data["windows"]), 16)
        self.assertEqual(data["location_key"], "51.5000,-0.1200")
        self.assertFalse(data["stale"])
        window = data["windows"][0]
        self.assertTrue(window["id"].startswith("window_51.5000_-0.1200_"))
        self.assertEqual(set(window["features"]), {"f_temp", "f_hum", "f_wind", "f_cloud", "f_rain", "f_vpd"})

    def test_invalid_query_params(self):
        self.assertEqual(self.client.get("/v1/drying/windows", params={**self.params, "days": 8}).status_code, 422)
        self.assertEqual(self.client.get("/v1/drying/windows", params={"lat": 91, "lon": 0}).status_code, 422)
        resp = self.client.get("/v1/drying/windows", params={**self.params, "step_hours": 13})
        self.assertEqual(resp.status_code, 400)

    def test_top_recommendations_sorted(self):
        resp = self.client.get("/v1/recommendations/top", params={**self.params, "limit": 4})
        self.assertEqual(resp.status_code, 200)
        scores = [w["score"] for w in resp.json()["windows"]]
        self.assertEqual(len(scores), 4)
        self.assertEqual(scores, sorted(scores, reverse=True))

    def test_no_safe_windows_is_404(self):
        self.source.rain_probability = 0.9
        resp = self.client.get("/v1/recommendations/top", params=self.params)
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"], "no_safe_windows")

    def test_all_providers_down_is_503(self):
        self.source.failing = {"fine", "coarse", "daily"}
        resp = self.client.get("/v1/drying/windows", params=self.params)
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["error"], "provider_unavailable")

    def test_degraded_source_reported(self):
        self.source.failing = {"fine"}
        resp = self.client.get("/v1/drying/windows", params={**self.params, "days": 1})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["degraded_sources"], ["fine"])

    def test_feedback_updates_weights_once(self):
        window_id = self._first_window_id()
        headers = {"X-User-Id": "alice"}
        body = {"window_id": window_id, "rating": 1, "event_id": "evt-1"}

        resp = self.client.post("/v1/feedback", json=body, headers=headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"ok": True, "duplicate": False})
        weights = self.client.get("/v1/weights", headers=headers).json()
        self.assertTrue(weights["personalised"])

        again = self.client.post("/v1/feedback", json=body, headers=headers)
        self.assertEqual(again.json(), {"ok": True, "duplicate": True})
        self.assertEqual(self.client.get("/v1/weights", headers=headers).json(), weights)
        self.assertFalse(self.client.get("/v1/weights", headers={"X-User-Id": "bob"}).json()["personalised"])

    def test_same_event_id_is_independent_per_user(self):
        body = {"window_id": self._first_window_id(), "rating": 1, "event_id": "1"}
        for user in ("alice", "bob"):
            resp = self.client.post("/v1/feedback", json=body, headers={"X-User-Id": user})
            self.assertEqual(resp.json(), {"ok": True, "duplicate": False})
            self.assertTrue(self.client.get("/v1/weights", headers={"X-User-Id": user}).json()["personalised"])

    def test_feedback_validation(self):
        window_id = self._first_window_id()
        bad_rating = self.client.post("/v1/feedback", json={"window_id": window_id, "rating": 2})
        self.assertEqual(bad_rating.status_code, 422)
        unknown = self.client.post("/v1/feedback", json={"window_id": "window_bogus", "rating": 1})
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(unknown.json()["error"], "unknown_window")

    def test_prefs_round_trip(self):
        self.ai.replies.append({"avoid_hours": [9, 8], "min_temp_c": 10, "prioritize": ["sun"]})
        headers = {"X-User-Id": "alice"}
        resp = self.client.post("/v1/prefs", json={"text": "not before 10, I like sun"}, headers=headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["avoid_hours"], [8, 9])
        self.assertEqual(self.client.get("/v1/prefs", headers=headers).json()["prioritize"], ["sun"])
        self.assertEqual(self.client.get("/v1/prefs", headers={"X-User-Id": "bob"}).status_code, 404)

    def test_prefs_filter_recommendations(self):
        self.ai.replies.append({"min_temp_c": 40})
        headers = {"X-User-Id": "alice"}
        self.client.post("/v1/prefs", json={"text": "only really hot days"}, headers=headers)
        resp = self.client.get("/v1/recommendations/top", params=self.params, headers=headers)
        self.assertEqual(resp.status_code, 404)

    def test_invalid_prefs_reply_is_502(self):
        self.ai.replies.append("sure, I will avoid mornings")
        resp = self.client.post("/v1/prefs", json={"text": "no mornings"})
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["error"], "invalid_ai_json")

    def test_explain(self):
        window_id = self._first_window_id()
        self.ai.replies.append(EXPLAIN_REPLY)
        resp = self.client.get("/v1/explain", params={"window_id": window_id})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["verdict"], "good")
        # second call is served from the explanation cache
        self.assertEqual(self.client.get("/v1/explain", params={"window_id": window_id}).status_code, 200)

    def test_ai_unavailable_is_503(self):
        window_id = self._first_window_id()

        def down(messages, *, format="json"):
            raise ProviderUnavailable("ollama", "connection refused")

        self.ai.chat = down
        resp = self.client.get("/v1/explain", params={"window_id": window_id})
        self.assertEqual(resp.status_code, 503)

    def test_weight_tuning(self):
        headers = {"X-User-Id": "alice"}
        self.ai.replies.append(TUNING_REPLY)
        resp = self.client.post("/v1/weights/tune", headers=headers)
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertAlmostEqual(data["weights"]["w3"], 0.24)
        self.assertAlmostEqual(data["weights"]["w6"], 0.24)
        self.assertEqual(data["weights"]["w0"], 0.0)

    def test_weight_tuning_out_of_bounds_rejected(self):
        headers = {"X-User-Id": "alice"}
        reply = json.loads(json.dumps(TUNING_REPLY))
        reply["delta"]["w1"] = 0.3
        self.ai.replies.append(reply)
        resp = self.client.post("/v1/weights/tune", headers=headers)
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["error"], "weight_tuning_rejected")
        self.assertFalse(self.client.get("/v1/weights", headers=headers).json()["personalised"])

    def test_weight_tuning_nan_delta_rejected(self):
        headers = {"X-User-Id": "alice"}
        reply = json.loads(json.dumps(TUNING_REPLY))
        reply["delta"]["w1"] = float("nan")
        self.ai.replies.append(reply)
        resp = self.client.post("/v1/weights/tune", headers=headers)
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["error"], "invalid_ai_json")
        weights = self.client.get("/v1/weights", headers=headers).json()
        self.assertFalse(weights["personalised"])
        self.assertEqual(weights["weights"]["w1"], 0.25)

    def test_reset_weights(self):
        headers = {"X-User-Id": "alice"}
        self.ai.replies.append(TUNING_REPLY)
        self.client.post("/v1/weights/tune", headers=headers)
        resp = self.client.delete("/v1/weights", headers=headers)
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["personalised"])
        self.assertEqual(resp.json()["weights"]["w3"], 0.20)

    def test_geocode(self):
        resp = self.client.get("/v1/geocode", params={"q": "London"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["country"], "GB")
        self.assertEqual(self.client.get("/v1/geocode", params={"lat": 51.5, "lon": -0.12}).json()["name"], "Westminster")
        self.assertEqual(self.client.get("/v1/geocode").status_code, 400)
        self.assertEqual(self.client.get("/v1/geocode", params={"q": "Atlantis"}).status_code, 404)

    def test_forecast_timeline(self):
        resp = self.client.get("/v1/forecast", params={**self.params, "hours": 24})
        self.assertEqual(resp.status_code, 200)
        hours = resp.json()["hours"]
        self.assertEqual(len(hours), 24)
        self.assertIn("rain_probability", hours[0])

    def test_api_key_required_when_configured(self):
        self.api_mod.settings.api_key = "secret"
        self.assertEqual(self.client.get("/v1/forecast", params=self.params).status_code, 401)
        wrong = self.client.get("/v1/forecast", params=self.params, headers={"X-API-Key": "nope"})
        self.assertEqual(wrong.status_code, 401)
        ok = self.client.get("/v1/forecast", params=self.params, headers={"X-API-Key": "secret"})
        self.assertEqual(ok.status_code, 200)

    def test_health_needs_no_api_key(self):
        self.api_mod.settings.api_key = "secret"
        self.api_mod.probe_ollama = lambda settings: OllamaStatus(
            base_url="http://ollama.test", model="phi4-mini", reachable=True, model_available=True
        )
        resp = self.client.get("/v1/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")
        self.assertTrue(resp.json()["ai"]["ok"])


if __name__ == "__main__":
    unittest.main()
