"""Process-local result cache for hot read paths.

A single `ResultCache` is built at process start (see `context.py`) and
passed to the operations that read or write through it. Entries carry their
own TTL and expire lazily on `get`. Writes flush everything with
`invalidate_all`.

Values are deep-copied on the way in and on the way out, so a caller that
mutates a returned result never changes what later readers see.

No locking: `invalidate_all` is idempotent and commutes with concurrent
`set` calls, and a `set` landing after an invalidation only stores freshly
computed data. Concurrent misses on one key may compute twice.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, TypeVar

from bson import ObjectId

log = logging.getLogger(__name__)

T = TypeVar("T")


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


class ResultCache:
    """Key -> value store with per-entry TTL.

    Args:
        clock: Monotonic time source in seconds; injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any:
        """Return the cached value, or `MISS` when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return MISS
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return MISS
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._entries[key] = (self._clock() + ttl_seconds, copy.deepcopy(value))

    def invalidate_all(self) -> None:
        self._entries = {}

    def __len__(self) -> int:
        return len(self._entries)


def _normalize(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    return value


def make_cache_key(operation: str, params: dict[str, Any] | None = None, **kwargs: Any) -> str:
    """Build a deterministic key from an operation name and its parameters.

    Parameters are serialized with sorted keys, so insertion order never
    matters, and `None` values are dropped (an unset filter and an explicit
    `None` are the same query). Values keep their JSON type, so `1` and
    `"1"` produce different keys.

    Args:
        operation: Operation name, e.g. "products" or "product".
        params: Parameters affecting the result.
        **kwargs: Extra parameters merged into `params`.

    Returns:
        Key string of the form `<operation>:<canonical-json>`.
    """
    merged = {**(params or {}), **kwargs}
    canonical = {k: _normalize(v) for k, v in merged.items() if v is not None}
    return f"{operation}:{json.dumps(canonical, sort_keys=True, separators=(',', ':'))}"


def cached(
    cache: ResultCache,
    key: str,
    ttl_seconds: float,
    compute: Callable[[], T],
) -> tuple[T, bool]:
    """Return `(value, was_cached)`, computing and storing on a miss.

    The cache is best-effort: a failing `get` or `set` is logged and the
    read falls through to `compute`. Errors raised by `compute` propagate
    and nothing is stored for the key.
    """
    try:
        hit = cache.get(key)
    except Exception as e:  # cache backend failure must not fail the read
        log.warning("Cache get failed for %s: %s", key, e)
        hit = MISS

    if hit is not MISS:
        log.debug("Cache hit: %s", key)
        return hit, True

    log.debug("Cache miss: %s", key)
    value = compute()

    try:
        cache.set(key, value, ttl_seconds)
    except Exception as e:
        log.warning("Cache set failed for %s: %s", key, e)

    return value, False
