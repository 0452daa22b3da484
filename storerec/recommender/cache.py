"""Recommendation cache.

Precomputed recommendation lists keyed by user id. The cache has no TTL:
each entry records the model version it was computed with, and a recompute
cycle replaces the whole mapping at once. Readers never lock; the complete
cache state is one immutable value that writers replace copy-on-write.

The in-flight registry collapses concurrent on-demand computations for the
same user into one.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Dict, Hashable, Iterable, Mapping, Optional, Sequence, Tuple, TypeVar

from storerec.exceptions import StaleModelWarning

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RecommendationEntry:
    """Cached recommendation list of one user.

    An empty ``product_ids`` means "computed, nothing to recommend", which
    is different from having no entry at all.
    """

    user_id: str
    product_ids: Tuple[str, ...]
    generated_at: datetime
    model_version: int
    personalized: bool = True


@dataclass(frozen=True)
class _CacheState:
    model_version: Optional[int]
    entries: Mapping[str, RecommendationEntry]


class RecommendationCache:
    """Per-user recommendation lists tagged with their model version."""

    def __init__(self):
        self._write_lock = threading.Lock()
        self._state = _CacheState(model_version=None, entries=MappingProxyType({}))

    @property
    def model_version(self) -> Optional[int]:
        return self._state.model_version

    def __len__(self) -> int:
        return len(self._state.entries)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._state.entries

    def get(self, user_id: str) -> Optional[RecommendationEntry]:
        """Return the entry for ``user_id``, or None if never computed."""
        return self._state.entries.get(user_id)

    def get_current(
        self, user_id: str, model_version: Optional[int]
    ) -> Optional[RecommendationEntry]:
        """Return the entry for ``user_id`` if it matches ``model_version``.

        Returns:
            The entry, or None if there is none.

        Raises:
            StaleModelWarning: If the entry was computed by another model
                version.
        """
        entry = self._state.entries.get(user_id)
        if entry is None:
            return None
        if entry.model_version != model_version:
            raise StaleModelWarning(user_id, entry.model_version, model_version)
        return entry

    def put(
        self,
        user_id: str,
        product_ids: Sequence[str],
        model_version: int,
        personalized: bool = True,
    ) -> bool:
        """Store one user's list.

        Entries for a model version other than the cache's current one are
        discarded, so nothing computed against a superseded snapshot can
        land after a publish.

        Returns:
            True if the entry was stored.
        """
        entry = RecommendationEntry(
            user_id=user_id,
            product_ids=tuple(product_ids),
            generated_at=datetime.now(timezone.utc),
            model_version=model_version,
            personalized=personalized,
        )
        with self._write_lock:
            state = self._state
            if state.model_version != model_version:
                logger.debug(
                    "Discarding cache write for superseded model",
                    extra={
                        "user_id": user_id,
                        "entry_version": model_version,
                        "cache_version": state.model_version,
                    },
                )
                return False
            entries = dict(state.entries)
            entries[user_id] = entry
            self._state = _CacheState(model_version, MappingProxyType(entries))
        return True

    def publish(
        self, entries: Iterable[RecommendationEntry], model_version: int
    ) -> None:
        """Atomically replace every entry with a freshly built set.

        Raises:
            ValueError: If an entry does not carry ``model_version``.
        """
        mapping: Dict[str, RecommendationEntry] = {}
        for entry in entries:
            if entry.model_version != model_version:
                raise ValueError(
                    f"Entry for user {entry.user_id} has model version "
                    f"{entry.model_version}, expected {model_version}"
                )
            mapping[entry.user_id] = entry

        with self._write_lock:
            self._state = _CacheState(model_version, MappingProxyType(mapping))

        logger.info(
            "Published recommendation cache",
            extra={"model_version": model_version, "num_entries": len(mapping)},
        )

    def invalidate_all(self, new_model_version: int) -> None:
        """Drop every entry and start accepting ``new_model_version``."""
        with self._write_lock:
            self._state = _CacheState(new_model_version, MappingProxyType({}))
        logger.info(f"Invalidated recommendation cache, model version {new_model_version}")


class InFlightRegistry:
    """At most one concurrent computation per key.

    The first caller for a key runs the computation; callers arriving while
    it runs wait for it and receive the same result (or exception).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: Dict[Hashable, Future] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def run(self, key: Hashable, compute: Callable[[], T]) -> T:
        with self._lock:
            future = self._in_flight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._in_flight[key] = future

        if not leader:
            logger.debug(f"Waiting for in-flight computation of {key}")
            return future.result()

        try:
            result = compute()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._in_flight.pop(key, None)
