import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

_MISSING = object()


class TTLCache:
    """
    Small in-process cache whose entries expire `ttl` seconds after being set.

    Used for read-mostly queries (blog listings, category trees, exchange
    rates). Writers call `clear` after changing the source data.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            stored_at, value = entry
            # expired entries stay around for last_value()
            if self._clock() - stored_at >= self.ttl:
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def get_or_set(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = factory()
            self.set(key, value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def last_value(self, key: Hashable) -> Optional[Any]:
        """Return the stored value even if it has expired (stale fallback)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry[1] if entry else None
