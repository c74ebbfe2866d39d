"""In-process read-through cache with per-kind TTLs and single-flight loading.

Entries are addressed by (kind, key). An entry is fresh until its kind's TTL
elapses, then stays available to `get_stale` for `stale_grace_seconds` so a
failing provider can fall back to its last snapshot.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Tuple

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache")

CacheKey = Tuple[str, Hashable]


@dataclass
class _Entry:
    value: Any
    stored_at: float
    expires_at: float


@dataclass(frozen=True)
class CacheHit:
    value: Any
    stored_at: float
    stale: bool


@dataclass
class _Flight:
    done: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: Optional[BaseException] = None


class TTLCache:
    def __init__(
        self,
        ttls_by_kind: Mapping[str, float],
        *,
        stale_grace_seconds: float = 0.0,
        default_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttls = dict(ttls_by_kind)
        self._default_ttl = float(default_ttl_seconds)
        self._grace = float(stale_grace_seconds)
        self._clock = clock
        self._entries: Dict[CacheKey, _Entry] = {}
        self._inflight: Dict[CacheKey, _Flight] = {}
        self._lock = threading.Lock()

    def ttl_for(self, kind: str) -> float:
        return float(self._ttls.get(kind, self._default_ttl))

    def now(self) -> float:
        return self._clock()

    def get(self, kind: str, key: Hashable) -> Any:
        """Return the fresh value for (kind, key) or None."""
        entry = self._entries.get((kind, key))
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.value

    def get_stale(self, kind: str, key: Hashable) -> Optional[CacheHit]:
        """Return the entry even if expired, as long as it is inside the grace period."""
        entry = self._entries.get((kind, key))
        if entry is None:
            return None
        now = self._clock()
        if entry.expires_at > now:
            return CacheHit(entry.value, entry.stored_at, stale=False)
        if entry.expires_at + self._grace > now:
            return CacheHit(entry.value, entry.stored_at, stale=True)
        return None

    def set(self, kind: str, key: Hashable, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._entries[(kind, key)] = _Entry(value, now, now + self.ttl_for(kind))
            self._prune(now)

    def invalidate(self, kind: str, key: Hashable) -> None:
        with self._lock:
            self._entries.pop((kind, key), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _prune(self, now: float) -> None:
        dead = [k for k, e in self._entries.items() if e.expires_at + self._grace <= now]
        for k in dead:
            del self._entries[k]

    def get_or_load(
        self,
        kind: str,
        key: Hashable,
        loader: Callable[[], Any],
        *,
        accept: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """Return the cached value or run `loader` once for all concurrent callers of this key.

        `accept(value)` may reject a fresh cached value; the entry is then dropped and reloaded.
        Loader errors are re-raised to every waiter and nothing is cached.
        """
        cache_key = (kind, key)
        with self._lock:
            entry = self._entries.get(cache_key)
            if entry is not None and entry.expires_at > self._clock():
                if accept is None or accept(entry.value):
                    return entry.value
                logger.debug("Cached value rejected; reloading", extra={"kind": kind, "key": str(key)})
                del self._entries[cache_key]
            flight = self._inflight.get(cache_key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._inflight[cache_key] = flight

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            if accept is not None and not accept(flight.value):
                return self.get_or_load(kind, key, loader, accept=accept)
            return flight.value

        try:
            value = loader()
        except BaseException as exc:
            flight.error = exc
            raise
        else:
            self.set(kind, key, value)
            flight.value = value
            return value
        finally:
            with self._lock:
                self._inflight.pop(cache_key, None)
            flight.done.set()
