"""
Time-bounded in-process cache of fetched trusted registries.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Any

from shared.logging import get_logger


DEFAULT_CACHE_TTL = 3600


@dataclass(frozen=True)
class RegistryEntry:
    """A registry body as fetched at ``fetched_at`` (epoch seconds)."""

    uri: str
    fetched_at: float
    body: Tuple[str, ...]

    def __contains__(self, jku: object) -> bool:
        return jku in self.body


class RegistryCache:
    """Registry URI -> last fetched entry.

    Entries are only ever replaced whole. A lookup older than the allowed age
    reports a miss but leaves the entry in place; the caller decides whether
    to refetch.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()
        self.logger = get_logger("trust.registry.cache")

    def get(self, uri: str, max_age: Optional[float] = None) -> Optional[RegistryEntry]:
        """Return the entry for ``uri`` if it is younger than ``max_age`` seconds."""
        if max_age is None:
            max_age = self.ttl_seconds

        with self._lock:
            entry = self._entries.get(uri)

        if entry is None:
            return None
        if self._clock() - entry.fetched_at >= max_age:
            return None
        return entry

    def put(self, uri: str, body: Iterable[str]) -> RegistryEntry:
        """Store ``body`` for ``uri``, replacing any previous entry."""
        entry = RegistryEntry(uri=uri, fetched_at=self._clock(), body=tuple(body))
        with self._lock:
            self._entries[uri] = entry

        self.logger.debug("Registry cached", uri=uri, entries=len(entry.body))
        return entry

    def peek(self, uri: str) -> Optional[RegistryEntry]:
        """Return the entry for ``uri`` regardless of its age."""
        with self._lock:
            return self._entries.get(uri)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> List[Dict[str, Any]]:
        """Describe every cached registry with its age in seconds."""
        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())

        return [
            {
                "uri": entry.uri,
                "fetched_at": entry.fetched_at,
                "age_seconds": round(now - entry.fetched_at, 3),
                "size": len(entry.body),
            }
            for entry in entries
        ]

    def __contains__(self, uri: object) -> bool:
        with self._lock:
            return uri in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Process-wide registry cache shared by pipelines that are not given one.
default_registry_cache = RegistryCache()
