"""Thread-safe in-memory LRU cache with per-entry expiry.

Used to remember the outcome of embed probes (can this booking page be
shown inside an iframe?) so that a widget conversation does not hit the
booking provider on every turn.

• **OrderedDict** for O(1) LRU eviction and promotion.
• **Entry ceiling** rather than a byte ceiling; probe results are tiny.
• **TTL** per entry, checked lazily on read.
• **threading.Lock** because FastAPI runs the agent in worker threads.
• Purely ephemeral; data is lost on process restart.

>>> cache = TTLCache(max_entries=256, ttl_seconds=3600)
>>> cache.put("embed:https://calendly.com/demo", True)
>>> cache.get("embed:https://calendly.com/demo")
True
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 512
DEFAULT_TTL_SECONDS = 3600.0


class TTLCache:
    """Least-Recently-Used cache whose entries expire after ``ttl_seconds``."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        # key → (value, expires_at)
        self._store: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._store[key]
                logger.debug("Cache: expired %s", key)
                return None
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Insert or overwrite *key*.  Evicts LRU entries if needed."""
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._store.pop(key, None)
            while len(self._store) >= self._max_entries and self._store:
                evicted_key, _ = self._store.popitem(last=False)
                logger.debug("Cache: evicted %s", evicted_key)
            self._store[key] = (value, self._clock() + ttl)

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        """Number of entries currently stored (expired ones included)."""
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a live key is present *without* promoting it."""
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and self._clock() < entry[1]
