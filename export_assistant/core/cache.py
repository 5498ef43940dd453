import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, List, Optional, Tuple, TypeVar

V = TypeVar("V")


class BoundedTTLCache(Generic[V]):
    """LRU cache with a hard capacity and an optional per-entry time-to-live.

    Reads refresh recency but not the expiry time. When the cache is full the
    least recently used entry is evicted; `on_evict` is called for it.
    """

    def __init__(
        self,
        capacity: int,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Optional[Callable[[Hashable, V], None]] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._on_evict = on_evict
        self._entries: "OrderedDict[Hashable, Tuple[V, Optional[float]]]" = OrderedDict()

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if self._expired(expires_at):
            del self._entries[key]
            return default
        self._entries.move_to_end(key)
        return value

    def set(self, key: Hashable, value: V) -> None:
        expires_at = self._clock() + self.ttl_seconds if self.ttl_seconds else None
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = (value, expires_at)
        while len(self._entries) > self.capacity:
            old_key, (old_value, _) = self._entries.popitem(last=False)
            if self._on_evict:
                self._on_evict(old_key, old_value)

    def pop(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        entry = self._entries.pop(key, None)
        return entry[0] if entry else default

    def items(self) -> List[Tuple[Hashable, V]]:
        return [(k, v) for k, (v, exp) in self._entries.items() if not self._expired(exp)]

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._expired(entry[1])

    def __len__(self) -> int:
        return len(self._entries)

