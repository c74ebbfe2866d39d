"""Application configuration pulled from environment variables via pydantic."""
import os
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the laundry optimizer service."""
    model_config = SettingsConfigDict(env_prefix="LAUNDRY_", extra="ignore")

    # weather + geocoding provider
    weather_source: str = "openweather"
    openweather_api_key: str = ""
    openweather_base_url: str = "https://api.openweathermap.org"
    openweather_onecall_path: str = "/data/3.0/onecall"
    openweather_forecast3h_path: str = "/data/2.5/forecast"
    openweather_geocode_direct_path: str = "/geo/1.0/direct"
    openweather_geocode_reverse_path: str = "/geo/1.0/reverse"
    http_timeout_seconds: float = 10.0

    # 429 handling, shared by weather and AI clients
    rate_limit_max_retries: int = 3
    rate_limit_base_delay_seconds: float = 0.5
    rate_limit_max_delay_seconds: float = 8.0
    rate_limit_jitter: float = 0.5

    # cache TTLs per kind
    cache_ttl_fine_seconds: int = 1800
    cache_ttl_coarse_seconds: int = 1800
    cache_ttl_daily_seconds: int = 7200
    cache_ttl_geocode_seconds: int = 86400
    cache_ttl_explain_seconds: int = 3600
    cache_ttl_window_seconds: int = 604800  # scored windows kept addressable for late feedback
    cache_stale_grace_seconds: int = 21600

    forecast_days: int = Field(default=7, ge=1, le=7)
    default_step_hours: int = 3
    max_step_hours: int = 12
    default_top_limit: int = 3

    # online learning
    learning_rate: float = 0.05
    learning_regularization: float = 1e-4
    learning_weight_bound: float | None = None
    feedback_history_limit: int = 20

    # AI provider
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "phi4-mini"
    ollama_timeout_seconds: float = 60.0
    ollama_options: dict = Field(
        default_factory=lambda: {
            "temperature": float(os.getenv("LAUNDRY_OLLAMA_TEMPERATURE", 0.3)),
            "num_predict": int(os.getenv("LAUNDRY_OLLAMA_NUM_PREDICT", 400)),
        }
    )
    weight_tuning_max_delta: float = 0.05
    max_prefs_text_chars: int = 1000

    # persistence of weights, feedback and prefs
    store_backend: str = "memory"  # options: memory, sql, redis
    store_database_url: str = "sqlite:///./laundry.db"
    store_redis_url: str | None = None

    api_key: str | None = None
    api_key_redis_url: str | None = None
    api_key_redis_set: str = "api_keys"

    @field_validator("ollama_base_url", "openweather_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    def cache_ttls(self) -> dict[str, float]:
        """TTL (seconds) keyed by cache kind."""
        return {
            "fine": self.cache_ttl_fine_seconds,
            "coarse": self.cache_ttl_coarse_seconds,
            "daily": self.cache_ttl_daily_seconds,
            "geocode": self.cache_ttl_geocode_seconds,
            "explain": self.cache_ttl_explain_seconds,
            "window": self.cache_ttl_window_seconds,
        }


settings = Settings()


if __name__ == "__main__":
    logger.logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4, exclude={'openweather_api_key', 'api_key'})}")
