import datetime as dt

import pytest

from laundry_optimizer.domain import DryingPreferences, FeatureVector, WeightVector, Window, WindowSummary
from laundry_optimizer.errors import NoSafeWindowsError
from laundry_optimizer.ranking import apply_preferences, top_n

UTC = dt.timezone.utc
BASE = dt.datetime(2024, 6, 1, 6, tzinfo=UTC)


def _window(hour_offset: int, score: float, *, unsafe=False, temp=20.0, rain_p=0.1):
    start = BASE + dt.timedelta(hours=hour_offset)
    return Window(
        id=f"w{hour_offset}",
        start=start,
        end=start + dt.timedelta(hours=3),
        step_hours=3,
        summary=WindowSummary(
            temp_c=temp,
            relative_humidity_pct=50.0,
            wind_ms=3.0,
            cloud_fraction=0.2,
            rain_probability=rain_p,
            rain_mm=0.0,
            hours=3,
        ),
        features=FeatureVector(f_temp=0.5, f_hum=0.5, f_wind=0.5, f_cloud=0.5, f_rain=0.5, f_vpd=0.5),
        score=score,
        unsafe=unsafe,
    )


def test_top_n_orders_by_score():
    ws = [_window(0, 0.2), _window(3, 0.8), _window(6, 0.5)]
    assert [w.id for w in top_n(ws, 2)] == ["w3", "w6"]


def test_top_n_ties_break_on_earliest_start():
    ws = [_window(9, 0.5), _window(3, 0.5), _window(6, 0.5)]
    assert [w.id for w in top_n(ws, 3)] == ["w3", "w6", "w9"]


def test_top_n_excludes_unsafe_windows():
    ws = [_window(0, -1.0, unsafe=True), _window(3, 0.1), _window(6, 9.0, unsafe=True)]
    assert [w.id for w in top_n(ws, 3)] == ["w3"]


def test_top_n_returns_fewer_when_short():
    assert len(top_n([_window(0, 0.3)], 5)) == 1


def test_top_n_all_unsafe_raises():
    with pytest.raises(NoSafeWindowsError):
        top_n([_window(0, -1.0, unsafe=True), _window(3, -1.0, unsafe=True)], 3)


def test_top_n_empty_raises():
    with pytest.raises(NoSafeWindowsError):
        top_n([], 1)


def test_top_n_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        top_n([_window(0, 0.3)], 0)


def test_top_n_rescoring_with_weights():
    ws = [_window(0, 0.0), _window(3, 0.9)]
    weights = WeightVector.from_list([0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    ranked = top_n(ws, 2, weights)
    # equal features and zero weights leave both at zero; earliest first
    assert [w.id for w in ranked] == ["w0", "w3"]
    assert all(w.score == 0.0 for w in ranked)


def test_apply_preferences_filters():
    ws = [_window(0, 0.5), _window(3, 0.5, temp=12.0), _window(6, 0.5, rain_p=0.4), _window(9, 0.5)]
    prefs = DryingPreferences(avoid_hours=[6], min_temp_c=15.0, max_rain_p=0.3)
    assert [w.id for w in apply_preferences(ws, prefs)] == ["w9"]


def test_apply_preferences_uses_local_hour():
    plus_two = dt.timezone(dt.timedelta(hours=2))
    ws = [_window(0, 0.5)]  # 06:00Z is 08:00 at UTC+2
    prefs = DryingPreferences(avoid_hours=[8])
    assert apply_preferences(ws, prefs, tz=plus_two) == []
    assert len(apply_preferences(ws, prefs)) == 1


def test_apply_preferences_none_is_passthrough():
    ws = [_window(0, 0.5)]
    assert apply_preferences(ws, None) == ws
