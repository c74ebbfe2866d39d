"""HTTP API for the laundry drying-window optimizer."""

import dataclasses
import hmac
import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

import redis
from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from .config import settings
from .domain import (
    DryingPreferences,
    ExplainResult,
    FeedbackEvent,
    WeightDelta,
    WeightVector,
    Window,
)
from .forecast_service import ForecastResult, build_forecast_service
from .learning import LearningEngine
from .ollama_client import ollama_client
from .ollama_health import probe_ollama
from .orchestrator import AIOrchestrator
from .ranking import apply_preferences, top_n
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="api")

# Optional Redis client for API key checks; fallback to a static key
_redis_client = None
if settings.api_key_redis_url:
    try:
        _redis_client = redis.Redis.from_url(settings.api_key_redis_url)
        logger.info("API key checks will use Redis backend", extra={"redis_url": mask_db_url(settings.api_key_redis_url)})
    except (redis.RedisError, ValueError) as exc:
        logger.warning("Failed to connect to Redis for API key checks; falling back to static key",
                       extra={"error": str(exc)})


def require_api_key(x_api_key: str | None = Header(default=None)):
    """
    Validate X-API-Key header against Redis (if configured) or the static api_key setting.
    """
    # If no key configured anywhere, allow requests (dev/default mode).
    if not settings.api_key and not _redis_client:
        return

    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if _redis_client:
        try:
            if _redis_client.sismember(settings.api_key_redis_set, x_api_key):
                return
        except redis.RedisError as e:
            logger.warning("Redis API key lookup error; falling back to static key",
                           extra={"error": str(e)})

    if settings.api_key and hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


def current_user(x_user_id: str = Header(default="anonymous", min_length=1, max_length=128)) -> str:
    return x_user_id


router = APIRouter(dependencies=[Depends(require_api_key)])
health_router = APIRouter()

forecast_service = build_forecast_service(settings)
learning_engine = LearningEngine(settings=settings)
orchestrator = AIOrchestrator(ollama_client, forecast_service.cache, settings)


class WindowsResponse(BaseModel):
    location_key: str
    stale: bool
    degraded_sources: List[str]
    generated_at: datetime
    windows: List[Window]


class HourOut(BaseModel):
    timestamp: datetime
    temp_c: float
    relative_humidity_pct: float
    wind_ms: float
    cloud_fraction: float
    rain_probability: float
    rain_mm: float


class ForecastResponse(BaseModel):
    location_key: str
    stale: bool
    degraded_sources: List[str]
    generated_at: datetime
    hours: List[HourOut]


class FeedbackRequest(BaseModel):
    window_id: str = Field(min_length=1)
    rating: Literal[0, 1]
    note: Optional[str] = Field(default=None, max_length=1000)
    event_id: Optional[str] = Field(default=None, min_length=1, max_length=128)


class FeedbackResponse(BaseModel):
    ok: bool
    duplicate: bool = False


class PrefsRequest(BaseModel):
    text: str = Field(min_length=1)


class WeightsResponse(BaseModel):
    weights: WeightVector
    personalised: bool


class TuneResponse(BaseModel):
    weights: WeightVector
    delta: WeightDelta
    justification: str


class GeocodeResponse(BaseModel):
    lat: float
    lon: float
    name: str
    country: str


def _windows_response(result: ForecastResult, windows: List[Window]) -> WindowsResponse:
    return WindowsResponse(
        location_key=result.location_key,
        stale=result.stale,
        degraded_sources=result.degraded_sources,
        generated_at=result.generated_at,
        windows=windows,
    )


def _forecast(lat: float, lon: float, *, days: int, step_hours: int, user_id: str) -> ForecastResult:
    weights = learning_engine.weights_for(user_id)
    try:
        return forecast_service.get_forecast(lat, lon, days=days, step_hours=step_hours, weights=weights)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/drying/windows", response_model=WindowsResponse)
def drying_windows(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    days: int = Query(7, ge=1, le=7),
    step_hours: int = Query(3, ge=1),
    user_id: str = Depends(current_user),
):
    """All windows in the horizon, vetoed ones included, scored with the caller's weights."""
    result = _forecast(lat, lon, days=days, step_hours=step_hours, user_id=user_id)
    return _windows_response(result, result.windows)


@router.get("/recommendations/top", response_model=WindowsResponse)
def recommendations_top(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    limit: int = Query(3, ge=1, le=56),
    step_hours: int = Query(3, ge=1),
    user_id: str = Depends(current_user),
):
    """Best safe windows after the caller's stored preference filters; 404 when none is safe."""
    result = _forecast(lat, lon, days=settings.forecast_days, step_hours=step_hours, user_id=user_id)
    prefs = learning_engine.store.get_prefs(user_id)
    candidates = apply_preferences(result.windows, prefs)
    return _windows_response(result, top_n(candidates, limit))


@router.post("/feedback", response_model=FeedbackResponse)
def submit_feedback(req: FeedbackRequest, user_id: str = Depends(current_user)):
    """Rate a window; triggers exactly one weight update per event id."""
    weights = learning_engine.weights_for(user_id)
    window = forecast_service.find_window(req.window_id, weights)
    event = FeedbackEvent(
        event_id=req.event_id or uuid.uuid4().hex,
        user_id=user_id,
        window_id=req.window_id,
        rating=req.rating,
        note=req.note,
        features=window.features,
        predicted_score=window.score,
    )
    updated = learning_engine.apply_feedback(event)
    return FeedbackResponse(ok=True, duplicate=updated is None)


@router.post("/prefs", response_model=DryingPreferences)
def set_prefs(req: PrefsRequest, user_id: str = Depends(current_user)):
    """Parse free-text preferences with the PREFS task and persist them."""
    prefs = orchestrator.parse_prefs(req.text)
    learning_engine.store.save_prefs(user_id, prefs)
    logger.info("Preferences saved", extra={"user_id": user_id})
    return prefs


@router.get("/prefs", response_model=DryingPreferences)
def get_prefs(user_id: str = Depends(current_user)):
    prefs = learning_engine.store.get_prefs(user_id)
    if prefs is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No preferences stored")
    return prefs


@router.get("/explain", response_model=ExplainResult)
def explain(window_id: str = Query(..., min_length=1), user_id: str = Depends(current_user)):
    weights = learning_engine.weights_for(user_id)
    window = forecast_service.find_window(window_id, weights)
    return orchestrator.explain(window, weights)


@router.post("/weights/tune", response_model=TuneResponse)
def tune_weights(user_id: str = Depends(current_user)):
    """Ask the model for a bounded weight delta from recent feedback and apply it."""
    store = learning_engine.store
    weights = learning_engine.weights_for(user_id)
    feedback = store.list_feedback(user_id, settings.feedback_history_limit)
    result = orchestrator.tune_weights(weights, feedback, store.get_prefs(user_id))
    updated = learning_engine.apply_delta(user_id, result.delta.model_dump())
    return TuneResponse(weights=updated, delta=result.delta, justification=result.justification)


@router.get("/weights", response_model=WeightsResponse)
def get_weights(user_id: str = Depends(current_user)):
    return WeightsResponse(
        weights=learning_engine.weights_for(user_id),
        personalised=learning_engine.is_personalised(user_id),
    )


@router.delete("/weights", response_model=WeightsResponse)
def reset_weights(user_id: str = Depends(current_user)):
    return WeightsResponse(weights=learning_engine.reset(user_id), personalised=False)


@router.get("/geocode", response_model=GeocodeResponse)
def geocode(
    q: Optional[str] = Query(None, min_length=1),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
):
    """Direct geocoding with `q`, reverse geocoding with `lat`+`lon`."""
    try:
        location = forecast_service.geocode(query=q, lat=lat, lon=lon)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return GeocodeResponse(**dataclasses.asdict(location))


@router.get("/forecast", response_model=ForecastResponse)
def forecast(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    hours: int = Query(48, ge=1, le=168),
):
    """The merged canonical hourly timeline."""
    result = forecast_service.get_timeline(lat, lon, hours)
    return ForecastResponse(
        location_key=result.location_key,
        stale=result.stale,
        degraded_sources=result.degraded_sources,
        generated_at=result.generated_at,
        hours=[HourOut(**dataclasses.asdict(row)) for row in result.timeline],
    )


@health_router.get("/health")
def health():
    return {
        "status": "ok",
        "ai": probe_ollama(settings).model_dump(),
        "generated_at": datetime.now(timezone.utc),
    }
