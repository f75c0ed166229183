"""
Query cache keyed by tuples, with stale times, prefix invalidation,
cancellation of in-flight fetches and optimistic mutations.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

logger = logging.getLogger(__name__)

MINUTE = 60.0

# key prefix -> seconds; the longest matching prefix wins
STALE_TIMES = {
    ("friends",): 15 * MINUTE,
    ("favorite-exercises",): 15 * MINUTE,
    ("profile",): 15 * MINUTE,
    ("friendRequests",): 5 * MINUTE,
    ("friendshipStatus",): 10 * MINUTE,
    ("admin", "stats"): 5 * MINUTE,
    ("appLogs",): 30.0,
    ("appLogs", "stats"): MINUTE,
}

Key = Tuple[Any, ...]
Prefix = Union[str, Key]

_MISSING = object()


def stale_time_for(key: Key) -> float:
    """Default stale time for a key; unknown keys are stale immediately."""
    best = max((p for p in STALE_TIMES if _matches(key, p)), key=len, default=None)
    return STALE_TIMES[best] if best else 0.0


def _as_prefix(prefix: Prefix) -> Key:
    return (prefix,) if isinstance(prefix, str) else tuple(prefix)


def _matches(key: Key, prefix: Key) -> bool:
    return key[:len(prefix)] == prefix


@dataclass
class CacheEntry:
    data: Any
    fetched_at: float
    stale_time: float
    invalidated: bool = False

    def is_fresh(self, now: float) -> bool:
        return not self.invalidated and now - self.fetched_at < self.stale_time


@dataclass
class MutationContext:
    """Snapshot returned by an ``on_mutate`` callback, handed to ``on_error``."""
    previous: Dict[Key, Any] = field(default_factory=dict)


class QueryCache:
    """Thread-safe cache shared by the online client and the sync service."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[Key, CacheEntry] = {}
        self._generations: Dict[Key, int] = {}
        self._lock = threading.RLock()

    def fetch(self, key: Key, fn: Callable[[], Any], stale_time: Optional[float] = None) -> Any:
        """Return fresh cached data for ``key`` or call ``fn`` and store its result.

        A fetch superseded by ``cancel`` still returns its result to the caller
        but does not overwrite the cache.
        """
        key = tuple(key)
        if stale_time is None:
            stale_time = stale_time_for(key)
        with self._lock:
            entry = self._entries.get(key)
            if entry and entry.is_fresh(self._clock()):
                return entry.data
            generation = self._generations.setdefault(key, 0)

        data = fn()

        with self._lock:
            if self._generations.get(key, 0) != generation:
                logger.debug("Discarding cancelled fetch for %s", key)
                return data
            self._entries[key] = CacheEntry(data, self._clock(), stale_time)
        return data

    def get_data(self, key: Key, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(tuple(key))
            return entry.data if entry else default

    def set_data(self, key: Key, value: Any, stale_time: Optional[float] = None) -> Any:
        """Store data directly. ``value`` may be a function of the current data."""
        key = tuple(key)
        with self._lock:
            entry = self._entries.get(key)
            if callable(value):
                value = value(entry.data if entry else None)
            if stale_time is None:
                stale_time = entry.stale_time if entry else stale_time_for(key)
            self._entries[key] = CacheEntry(value, self._clock(), stale_time)
            return value

    def invalidate(self, prefix: Prefix) -> int:
        """Mark every entry under ``prefix`` stale. Returns how many matched."""
        prefix = _as_prefix(prefix)
        with self._lock:
            matched = [entry for key, entry in self._entries.items() if _matches(key, prefix)]
            for entry in matched:
                entry.invalidated = True
        return len(matched)

    def cancel(self, prefix: Prefix) -> None:
        """Discard the results of in-flight fetches under ``prefix``."""
        prefix = _as_prefix(prefix)
        with self._lock:
            for key in list(self._generations):
                if _matches(key, prefix):
                    self._generations[key] += 1

    def remove(self, prefix: Prefix) -> None:
        prefix = _as_prefix(prefix)
        with self._lock:
            for key in [k for k in self._entries if _matches(k, prefix)]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for key in self._generations:
                self._generations[key] += 1

    def is_stale(self, key: Key) -> bool:
        with self._lock:
            entry = self._entries.get(tuple(key))
            return entry is None or not entry.is_fresh(self._clock())

    def snapshot(self, keys: Iterable[Key]) -> MutationContext:
        """Capture current data for later rollback."""
        with self._lock:
            return MutationContext({
                tuple(key): (self._entries[tuple(key)].data if tuple(key) in self._entries else _MISSING)
                for key in keys
            })

    def restore(self, context: Optional[MutationContext]) -> None:
        if context is None:
            return
        with self._lock:
            for key, data in context.previous.items():
                if data is _MISSING:
                    self._entries.pop(key, None)
                else:
                    self.set_data(key, data)

    def mutate(
        self,
        fn: Callable[[], Any],
        *,
        on_mutate: Optional[Callable[[], Any]] = None,
        on_error: Optional[Callable[[Exception, Any], None]] = None,
        on_success: Optional[Callable[[Any, Any], None]] = None,
        on_settled: Optional[Callable[[], None]] = None,
        invalidate: Iterable[Prefix] = (),
    ) -> Any:
        """Run a mutation.

        ``on_mutate`` applies an optimistic patch and returns a context for
        ``on_error``. On failure the error is re-raised after ``on_error``.
        ``invalidate`` prefixes are marked stale on success; ``on_settled``
        runs either way.
        """
        context = on_mutate() if on_mutate else None
        try:
            result = fn()
        except Exception as e:
            if on_error:
                on_error(e, context)
            if on_settled:
                on_settled()
            raise
        if on_success:
            on_success(result, context)
        for prefix in invalidate:
            self.invalidate(prefix)
        if on_settled:
            on_settled()
        return result
