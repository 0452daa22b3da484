"""Recompute scheduler.

Runs the batch pipeline that keeps the serving path fresh:

    IDLE -> EXTRACTING -> TRAINING -> PUBLISHING -> IDLE

Extracting reads the event log, training builds a new snapshot, and
publishing scores every known user against it and swaps the cache and the
current snapshot. Until that swap the previous snapshot and cache stay fully
servable. A failed or cancelled cycle publishes nothing.

Only one cycle runs at a time. Triggers that arrive while a cycle is running
collapse into a single follow-up cycle.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from storerec.config import EngineConfig
from storerec.exceptions import InsufficientDataError, RecomputeCancelled
from storerec.recommender.cache import RecommendationCache
from storerec.recommender.catalog import ProductCatalog
from storerec.recommender.events import EventStore
from storerec.recommender.model import ModelSnapshot, train
from storerec.recommender.serving import build_entries
from storerec.recommender.signals import extract
from storerec.recommender.snapshots import SnapshotStore, save_snapshot

# Configure module logger
logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    TRAINING = "training"
    PUBLISHING = "publishing"


class CycleStatus(str, Enum):
    PUBLISHED = "published"
    INSUFFICIENT_DATA = "insufficient_data"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one recompute cycle."""

    status: CycleStatus
    started_at: datetime
    finished_at: datetime
    model_version: Optional[int] = None
    num_events: int = 0
    num_users: int = 0
    error: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        return round((self.finished_at - self.started_at).total_seconds() * 1000, 2)


class RecomputeScheduler:
    """Drives extraction, training and publication of model snapshots."""

    def __init__(
        self,
        event_store: EventStore,
        catalog: ProductCatalog,
        snapshots: SnapshotStore,
        cache: RecommendationCache,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.event_store = event_store
        self.catalog = catalog
        self.snapshots = snapshots
        self.cache = cache
        self.config = config or EngineConfig()
        self.clock = clock

        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._pending = False
        self._cancel = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._listeners = []
        self.last_result: Optional[CycleResult] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_listener(self, listener: Callable[[CycleResult], None]) -> None:
        """Register a callback invoked with every finished cycle's result."""
        self._listeners.append(listener)

    def _set_state(self, state: SchedulerState) -> None:
        with self._state_lock:
            self._state = state
        logger.debug(f"Recompute scheduler state: {state.value}")

    def _check_cancelled(self, stage: SchedulerState) -> None:
        if self._cancel.is_set():
            raise RecomputeCancelled(stage.value)

    def run_cycle(self, as_of: Optional[datetime] = None) -> Optional[CycleResult]:
        """Run a recompute cycle in the calling thread.

        If a cycle is already running, the request is recorded as pending and
        this call returns None immediately; the running cycle runs once more
        when it finishes.

        Args:
            as_of: Reference time for the cycle (default: now).

        Returns:
            Result of the last cycle run by this call, or None if coalesced.
        """
        if not self._try_acquire():
            return None
        return self._run_locked(as_of)

    def trigger(self) -> bool:
        """Request an immediate recompute without blocking the caller.

        Returns:
            True if a new cycle was started, False if the request was
            coalesced into the running one.
        """
        if not self._try_acquire():
            return False

        # The worker inherits the cycle lock taken here
        worker = threading.Thread(
            target=self._run_locked, name="storerec-recompute-trigger", daemon=True
        )
        worker.start()
        return True

    def _try_acquire(self) -> bool:
        """Take the cycle lock, or record a pending run if a cycle holds it.

        Runs under the state lock, as does the final pending check in
        ``_run_locked``, so a pending run is always seen by the holder.
        """
        with self._state_lock:
            if self._cycle_lock.acquire(blocking=False):
                return True
            self._pending = True
        logger.info("Recompute already running, trigger coalesced")
        return False

    def _run_locked(self, as_of: Optional[datetime] = None) -> CycleResult:
        try:
            while True:
                result = self._run_once(as_of)
                as_of = None
                with self._state_lock:
                    if not self._pending:
                        self._cycle_lock.release()
                        return result
                    self._pending = False
                logger.info("Running coalesced recompute cycle")
        except BaseException:
            self._cycle_lock.release()
            raise

    def cancel(self) -> None:
        """Abort the running cycle if it has not reached publishing."""
        self._cancel.set()
        with self._state_lock:
            self._pending = False

    def _run_once(self, as_of: Optional[datetime]) -> CycleResult:
        started_at = self.clock()
        as_of = as_of or started_at
        version = self.snapshots.next_version()
        num_events = 0
        self._cancel.clear()

        logger.info(
            "Starting recompute cycle",
            extra={"model_version": version, "as_of": as_of.isoformat()},
        )

        try:
            self._set_state(SchedulerState.EXTRACTING)
            since = None
            if self.config.event_window_days is not None:
                since = as_of - timedelta(days=self.config.event_window_days)
            events = self.event_store.list_events(since=since)
            num_events = len(events)
            self._check_cancelled(SchedulerState.EXTRACTING)

            self._set_state(SchedulerState.TRAINING)
            matrix = extract(events, as_of, self.config)
            snapshot = train(matrix, version=version, config=self.config)
            self._check_cancelled(SchedulerState.TRAINING)

            self._set_state(SchedulerState.PUBLISHING)
            self._publish(snapshot)

            result = CycleResult(
                status=CycleStatus.PUBLISHED,
                started_at=started_at,
                finished_at=self.clock(),
                model_version=version,
                num_events=num_events,
                num_users=snapshot.num_users,
            )
            logger.info(
                "Recompute cycle published",
                extra={
                    "model_version": version,
                    "num_events": num_events,
                    "num_users": snapshot.num_users,
                    "duration_ms": result.duration_ms,
                },
            )
        except InsufficientDataError as e:
            logger.warning(
                "Recompute skipped, keeping previous snapshot",
                extra={"reason": e.message, "model_version": self.snapshots.version},
            )
            result = self._failed(CycleStatus.INSUFFICIENT_DATA, started_at, num_events, e)
        except RecomputeCancelled as e:
            logger.warning(
                "Recompute cycle cancelled, partial work discarded",
                extra={"stage": e.details.get("stage")},
            )
            result = self._failed(CycleStatus.CANCELLED, started_at, num_events, e)
        except Exception as e:
            logger.error(
                "Recompute cycle failed, keeping previous snapshot",
                extra={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "model_version": self.snapshots.version,
                },
                exc_info=True,
            )
            result = self._failed(CycleStatus.FAILED, started_at, num_events, e)
        finally:
            self._set_state(SchedulerState.IDLE)

        self.last_result = result
        for listener in self._listeners:
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Recompute listener failed: {e}", exc_info=True)
        return result

    def _failed(
        self,
        status: CycleStatus,
        started_at: datetime,
        num_events: int,
        error: Exception,
    ) -> CycleResult:
        return CycleResult(
            status=status,
            started_at=started_at,
            finished_at=self.clock(),
            model_version=self.snapshots.version,
            num_events=num_events,
            error=str(error),
        )

    def _publish(self, snapshot: ModelSnapshot) -> None:
        # Build everything before swapping anything
        catalog_ids = self.catalog.list_product_ids()
        entries = build_entries(snapshot, catalog_ids or None, self.config.cache_depth)

        self.cache.publish(entries, snapshot.version)
        self.snapshots.publish(snapshot)

        if self.config.snapshot_dir:
            try:
                save_snapshot(snapshot, self.config.snapshot_dir)
            except OSError as e:
                logger.error(f"Failed to persist model snapshot: {e}", exc_info=True)

    def restore(self, snapshot: ModelSnapshot) -> None:
        """Publish a previously persisted snapshot, e.g. at startup."""
        with self._cycle_lock:
            self._set_state(SchedulerState.PUBLISHING)
            try:
                catalog_ids = self.catalog.list_product_ids()
                entries = build_entries(
                    snapshot, catalog_ids or None, self.config.cache_depth
                )
                self.cache.publish(entries, snapshot.version)
                self.snapshots.publish(snapshot)
            finally:
                self._set_state(SchedulerState.IDLE)
        logger.info(f"Restored model snapshot v{snapshot.version}")

    def start(self) -> None:
        """Start the background thread running cycles on a fixed cadence."""
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="storerec-recompute", daemon=True
        )
        self._thread.start()
        logger.info(
            f"Recompute scheduler started, interval "
            f"{self.config.recompute_interval_seconds}s"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background thread, cancelling a running cycle."""
        self._stop.set()
        self.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Recompute scheduler stopped")

    def _loop(self) -> None:
        if self.config.recompute_on_start:
            self.run_cycle()
        while not self._stop.wait(self.config.recompute_interval_seconds):
            started = time.time()
            self.run_cycle()
            logger.debug(f"Scheduled recompute took {time.time() - started:.2f}s")
