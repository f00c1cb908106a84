"""Result cache for expensive read models (gap analysis).

The engine never caches on its own; callers inject a ``ResultCache`` and the
API layer keys gap-analysis results by organization, frameworks and
granularity.

Key convention: ``{namespace}:{name}:{arg_hash}``
"""
import hashlib
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ResultCache(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...


class TTLCache:
    """In-process cache whose entries expire ``ttl_seconds`` after insertion.

    Expired entries are swept on every ``set``. At most ``max_entries`` are
    kept; the entry closest to expiry is evicted first.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        # insertion order == expiry order, since the TTL is fixed
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        now = self._clock()
        self._sweep(now)
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_entries:
            evicted = next(iter(self._entries))
            del self._entries[evicted]
            logger.debug("Cache full, evicted %s", evicted)
        self._entries[key] = (now + self.ttl_seconds, value)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))

    def __len__(self) -> int:
        return len(self._entries)


def build_cache_key(namespace: str, name: str, **params) -> str:
    """Deterministic key from keyword parameters; list order is significant."""
    payload = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    arg_hash = hashlib.sha256(payload.encode()).hexdigest()[:16]
    return f"{namespace}:{name}:{arg_hash}"
