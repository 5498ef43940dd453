import copy
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

USER_CONTEXTS = "user_contexts"
BEHAVIOR_PATTERNS = "behavior_patterns"
ANALYTICS_EVENTS = "analytics_events"


class PersistenceStore(ABC):
    """Durable storage the engine writes through.

    Key/value entries with an optional TTL back cached provider lookups;
    collections of dict records back contexts, patterns and events.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def save(self, collection: str, record: Dict[str, Any], key_field: str = "user_id") -> None:
        """Insert or replace the record whose `key_field` matches."""

    @abstractmethod
    async def load_by_user_id(self, collection: str, user_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def load_all(self, collection: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def delete_by_user_id(self, collection: str, user_id: str) -> int:
        ...

    @abstractmethod
    async def delete_before(self, collection: str, field: str, cutoff: float) -> int:
        """Drop records whose numeric `field` is below `cutoff`."""

    async def close(self) -> None:
        return None


class InMemoryStore(PersistenceStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._values: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return None
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_ms / 1000.0 if ttl_ms else None
        self._values[key] = (copy.deepcopy(value), expires_at)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def save(self, collection: str, record: Dict[str, Any], key_field: str = "user_id") -> None:
        if key_field not in record:
            raise KeyError(f"record has no '{key_field}' field")
        self._collections.setdefault(collection, {})[str(record[key_field])] = copy.deepcopy(record)

    async def load_by_user_id(self, collection: str, user_id: str) -> List[Dict[str, Any]]:
        records = self._collections.get(collection, {}).values()
        return [copy.deepcopy(r) for r in records if r.get("user_id") == user_id]

    async def load_all(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._collections.get(collection, {}).values()]

    async def delete_by_user_id(self, collection: str, user_id: str) -> int:
        records = self._collections.get(collection, {})
        keys = [k for k, r in records.items() if r.get("user_id") == user_id]
        for key in keys:
            del records[key]
        return len(keys)

    async def delete_before(self, collection: str, field: str, cutoff: float) -> int:
        records = self._collections.get(collection, {})
        keys = [k for k, r in records.items() if r.get(field) is not None and r[field] < cutoff]
        for key in keys:
            del records[key]
        return len(keys)

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))
