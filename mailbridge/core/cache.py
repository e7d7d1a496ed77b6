"""Keyed in-memory cache used for messages and folders.

Operations never suspend, so callers running on the event loop see each
``get``/``put``/``invalidate`` complete atomically. Anything read before an
``await`` may still have changed by the time the caller resumes.

Invalidation rules used by the mailbox session:

- fetch / lookup: ``put`` the full message
- mark read / star: update the cached message in place
- move: reassign the cached message's folder
- delete: ``invalidate`` the message
- folder CRUD: ``invalidate_all`` on the folder cache

Usage Examples
--------------

    >>> cache = KeyedCache("messages", max_entries=1000)
    >>> cache.put("42", message)
    >>> cache.get("42")
    >>> cache.invalidate("42")
    >>> cache.stats()["hit_rate_percent"]
"""

from collections import OrderedDict
from typing import Any, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class KeyedCache(Generic[K, V]):
    """LRU-bounded map with hit/miss metrics and an on/off switch.

    When disabled every ``get`` misses and ``put`` is a no-op, so callers
    fall through to the server.
    """

    def __init__(
        self, name: str, max_entries: Optional[int] = None, enabled: bool = True
    ) -> None:
        self.name = name
        self.max_entries = max_entries
        self.enabled = enabled
        self._entries: "OrderedDict[K, V]" = OrderedDict()
        self._metrics = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "evictions_lru": 0,
            "invalidations_one": 0,
            "invalidations_all": 0,
        }

    def get(self, key: K) -> Optional[V]:
        if not self.enabled or key not in self._entries:
            self._metrics["misses"] += 1
            return None

        self._entries.move_to_end(key)
        self._metrics["hits"] += 1
        return self._entries[key]

    def put(self, key: K, value: V) -> None:
        if not self.enabled:
            return

        if (
            self.max_entries is not None
            and key not in self._entries
            and len(self._entries) >= self.max_entries
        ):
            self._entries.popitem(last=False)
            self._metrics["evictions_lru"] += 1
            logger.debug(f"Oldest {self.name} cache entry evicted (LRU)")

        self._entries[key] = value
        self._entries.move_to_end(key)
        self._metrics["sets"] += 1

    def invalidate(self, key: K) -> bool:
        """Drop one entry; returns whether it was present."""
        if self._entries.pop(key, None) is None:
            return False
        self._metrics["invalidations_one"] += 1
        return True

    def invalidate_all(self) -> int:
        """Drop every entry; returns how many were removed."""
        removed = len(self._entries)
        self._entries.clear()
        self._metrics["invalidations_all"] += 1
        if removed:
            logger.debug(f"{self.name} cache cleared ({removed} entries removed)")
        return removed

    def values(self) -> List[V]:
        return list(self._entries.values())

    def items(self) -> Iterator[Tuple[K, V]]:
        return iter(list(self._entries.items()))

    def stats(self) -> Dict[str, Any]:
        """Return cache statistics"""
        total_requests = self._metrics["hits"] + self._metrics["misses"]
        hit_rate = (
            (self._metrics["hits"] / total_requests) * 100 if total_requests > 0 else 0.0
        )
        return {
            "name": self.name,
            "enabled": self.enabled,
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "hit_rate_percent": hit_rate,
            "metrics": dict(self._metrics),
        }

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
