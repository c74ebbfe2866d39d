"""Reachability probe and startup preflight for the configured Ollama model."""

import os
from typing import List, Optional

import requests
from pydantic import BaseModel, Field, computed_field

from laundry_optimizer import config
from laundry_optimizer.errors import ProviderUnavailable
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="ollama_health")

PROVIDER = "ollama"
PROBE_TIMEOUT_SECONDS = 3.0


def auto_pull_enabled() -> bool:
    """LAUNDRY_AUTO_PULL_OLLAMA_MODELS=true|false (default true)."""
    return os.getenv("LAUNDRY_AUTO_PULL_OLLAMA_MODELS", "true").lower() in ("1", "true", "yes")


class OllamaStatus(BaseModel):
    """What /health reports about the AI provider."""
    base_url: str
    model: str
    reachable: bool = False
    model_available: bool = False
    installed_models: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ok(self) -> bool:
        return self.reachable and self.model_available


def installed_model_names(tags_json: dict) -> set[str]:
    """Names from /api/tags, each also under its untagged base name ("phi4-mini:latest" -> "phi4-mini")."""
    names: set[str] = set()
    for entry in tags_json.get("models", []):
        name = entry.get("name")
        if name:
            names.update((name, name.split(":")[0]))
    return names


def probe_ollama(settings: config.Settings | None = None) -> OllamaStatus:
    """Never raises; failures are reported in the returned status."""
    settings = settings or config.settings
    status = OllamaStatus(base_url=settings.ollama_base_url, model=settings.ollama_model)
    try:
        resp = requests.get(f"{settings.ollama_base_url}/api/tags", timeout=PROBE_TIMEOUT_SECONDS)
        resp.raise_for_status()
        installed = installed_model_names(resp.json())
    except (requests.RequestException, ValueError) as exc:
        status.error = str(exc)
        return status

    status.reachable = True
    status.installed_models = sorted(installed)
    status.model_available = settings.ollama_model in installed
    return status


def pull_model(name: str, settings: config.Settings | None = None) -> None:
    """Block on /api/pull until Ollama has the model; ProviderUnavailable if the pull fails."""
    settings = settings or config.settings
    logger.info("Pulling Ollama model", extra={"model": name})
    try:
        with requests.post(
            f"{settings.ollama_base_url}/api/pull", json={"name": name}, stream=True, timeout=None
        ) as resp:
            resp.raise_for_status()
            for line in resp.iter_lines():
                if line and b'"status"' in line:
                    logger.info(f"   [ollama] {line.decode('utf-8', errors='replace')}")
    except requests.RequestException as exc:
        raise ProviderUnavailable(PROVIDER, f"pull of '{name}' failed: {exc}") from exc


def ensure_ollama_ready(settings: config.Settings | None = None, *, auto_pull: bool | None = None) -> OllamaStatus:
    """Startup preflight: Ollama must be reachable and the configured model installed (pulled if allowed)."""
    settings = settings or config.settings
    if auto_pull is None:
        auto_pull = auto_pull_enabled()

    status = probe_ollama(settings)
    if not status.reachable:
        raise ProviderUnavailable(PROVIDER, f"not reachable at {status.base_url} ({status.error})")
    if status.model_available:
        logger.info("Ollama ready", extra={"base_url": status.base_url, "model": status.model})
        return status
    if not auto_pull:
        raise ProviderUnavailable(PROVIDER, f"model '{status.model}' is not installed; run: ollama pull {status.model}")

    pull_model(status.model, settings)
    status = probe_ollama(settings)
    if not status.model_available:
        raise ProviderUnavailable(PROVIDER, f"model '{status.model}' still missing after pull")
    return status
