"""Thin client for calling the local Ollama chat API."""

import time

import requests

from laundry_optimizer import config
from laundry_optimizer.data_sources.http import RetryPolicy, send_with_backoff
from laundry_optimizer.errors import ProviderUnavailable
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="ollama_client")

PROVIDER = "ollama"


class OllamaClient:
    """Minimal client for the Ollama chat API."""

    def __init__(self, settings: config.Settings | None = None, session: requests.Session | None = None):
        settings = settings or config.settings
        self.url = f"{settings.ollama_base_url}/api/chat"
        self.model = settings.ollama_model
        self.options = dict(settings.ollama_options)
        self.timeout = settings.ollama_timeout_seconds
        self.retry_policy = RetryPolicy.from_settings(settings)
        self.session = session or requests.Session()

    def chat(self, messages: list[dict], *, format: str | dict | None = "json") -> str:
        """Send a non-streaming chat request and return the assistant content.

        `format="json"` (or a JSON schema dict) switches Ollama into structured-output mode.
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": self.options,
        }
        if format is not None:
            payload["format"] = format

        logger.debug("Ollama POST payload: %s", payload)
        started = time.monotonic()
        resp = send_with_backoff(
            lambda: self.session.post(self.url, json=payload, timeout=self.timeout),
            provider=PROVIDER,
            policy=self.retry_policy,
        )
        logger.info(
            "Ollama POST took %.2fs",
            time.monotonic() - started,
            extra={"model": self.model, "status": resp.status_code},
        )

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderUnavailable(PROVIDER, f"non-JSON response: {(resp.text or '')[:200]}") from exc
        if not isinstance(data, dict):
            raise ProviderUnavailable(PROVIDER, f"expected a JSON object, got {type(data).__name__}")
        message = data.get("message") or {}
        if not isinstance(message, dict):
            raise ProviderUnavailable(PROVIDER, "response 'message' is not an object")
        content = message.get("content", "")
        if not isinstance(content, str):
            content = str(content)
        return content


ollama_client = OllamaClient()
