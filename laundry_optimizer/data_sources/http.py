"""Bounded retry loop for rate-limited (HTTP 429) provider calls.

Only 429 answers are retried. Transport errors, timeouts and any other non-2xx
status fail immediately as ProviderUnavailable so the caller can degrade.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from laundry_optimizer.errors import ProviderUnavailable
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="http")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0
    jitter: float = 0.5

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.rate_limit_max_retries,
            base_delay_seconds=settings.rate_limit_base_delay_seconds,
            max_delay_seconds=settings.rate_limit_max_delay_seconds,
            jitter=settings.rate_limit_jitter,
        )


def backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    *,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number `attempt` (0-based): capped exponential plus proportional jitter.

    Result lies in [d, d * (1 + jitter)] where d = min(base * 2**attempt, max).
    """
    base = min(policy.max_delay_seconds, policy.base_delay_seconds * (2 ** max(0, int(attempt))))
    return base + base * policy.jitter * rand()


def _retry_after_seconds(resp: requests.Response, policy: RetryPolicy) -> Optional[float]:
    raw = str(resp.headers.get("Retry-After") or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return max(0.0, min(policy.max_delay_seconds, value))


def send_with_backoff(
    send: Callable[[], requests.Response],
    *,
    provider: str,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    rand: Callable[[], float] = random.random,
) -> requests.Response:
    """Call `send()` until it answers with something other than 429 or the budget runs out.

    Returns the first 2xx response. Raises ProviderUnavailable on transport errors,
    non-2xx statuses and an exhausted retry budget.
    """
    attempt = 0
    while True:
        try:
            resp = send()
        except requests.Timeout as exc:
            raise ProviderUnavailable(provider, f"timed out: {exc}") from exc
        except requests.RequestException as exc:
            raise ProviderUnavailable(provider, f"request failed: {exc}") from exc

        if resp.status_code == 429:
            if attempt >= policy.max_retries:
                raise ProviderUnavailable(
                    provider, f"rate limited; gave up after {policy.max_retries} retries"
                )
            delay = _retry_after_seconds(resp, policy)
            if delay is None:
                delay = backoff_delay(attempt, policy, rand=rand)
            logger.warning(
                "Rate limited, backing off",
                extra={"provider": provider, "attempt": attempt + 1, "delay_s": round(delay, 3)},
            )
            sleep(delay)
            attempt += 1
            continue

        if not 200 <= resp.status_code < 300:
            detail = (getattr(resp, "text", "") or "")[:200]
            raise ProviderUnavailable(provider, f"HTTP {resp.status_code}: {detail}")
        return resp
