"""Tests for the recompute scheduler."""

import threading
import time

import pytest

from conftest import BASE_TIME, make_event
from storerec.config import EngineConfig
from storerec.recommender.engine import build_engine
from storerec.recommender.events import InMemoryEventStore
from storerec.recommender.scheduler import CycleStatus, SchedulerState
from storerec.recommender.snapshots import snapshot_exists


class GatedEventStore(InMemoryEventStore):
    """Event store whose first read blocks until the gate opens."""

    def __init__(self, events):
        super().__init__(events)
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.reads = 0

    def list_events(self, since=None):
        self.reads += 1
        if self.reads == 1:
            self.entered.set()
            self.gate.wait(5)
        return super().list_events(since)


class FailingEventStore(InMemoryEventStore):
    def list_events(self, since=None):
        raise RuntimeError("event log unavailable")


def _engine(events, config, catalog, store=None):
    built = build_engine(
        config,
        event_store=store if store is not None else InMemoryEventStore(events),
        catalog=catalog,
    )
    built.scheduler.clock = lambda: BASE_TIME
    return built


def test_run_cycle_publishes_snapshot_and_cache(engine):
    result = engine.scheduler.run_cycle()

    assert result.status == CycleStatus.PUBLISHED
    assert result.model_version == 1
    assert result.num_events == 4
    assert result.num_users == 2
    assert engine.snapshots.version == 1
    assert engine.cache.model_version == 1
    assert engine.cache.get("u1").product_ids == ("p3", "p1")
    assert engine.scheduler.state == SchedulerState.IDLE


def test_run_cycle_versions_increase(trained_engine):
    result = trained_engine.scheduler.run_cycle()

    assert result.model_version == 2
    assert trained_engine.snapshots.version == 2
    assert trained_engine.cache.get("u2").model_version == 2


def test_run_cycle_without_events_keeps_previous_state(config, catalog):
    engine = _engine([], config, catalog)

    result = engine.scheduler.run_cycle()

    assert result.status == CycleStatus.INSUFFICIENT_DATA
    assert result.model_version is None
    assert engine.snapshots.current is None
    assert engine.scheduler.last_result is result


def test_empty_event_log_keeps_prior_snapshot_and_cache(trained_engine):
    previous = trained_engine.snapshots.current
    before = trained_engine.recommend("u1", 2)
    trained_engine.scheduler.event_store = InMemoryEventStore()

    result = trained_engine.scheduler.run_cycle()

    assert result.status == CycleStatus.INSUFFICIENT_DATA
    assert trained_engine.snapshots.current is previous
    assert trained_engine.cache.get("u1").model_version == 1
    after = trained_engine.recommend("u1", 2)
    assert after.product_ids == before.product_ids
    assert after.model_version == 1
    assert after.cached


def test_failed_cycle_keeps_serving_previous_snapshot(trained_engine):
    previous = trained_engine.snapshots.current
    trained_engine.scheduler.event_store = FailingEventStore()

    result = trained_engine.scheduler.run_cycle()

    assert result.status == CycleStatus.FAILED
    assert "event log unavailable" in result.error
    assert trained_engine.snapshots.current is previous
    assert trained_engine.cache.model_version == 1
    assert trained_engine.recommend("u1", 2).product_ids == ["p3", "p1"]
    assert trained_engine.scheduler.state == SchedulerState.IDLE


def test_cancel_discards_partial_work(scenario_events, config, catalog):
    engine = None

    class CancellingStore(InMemoryEventStore):
        def list_events(self, since=None):
            engine.scheduler.cancel()
            return super().list_events(since)

    engine = _engine(scenario_events, config, catalog, store=CancellingStore(scenario_events))

    result = engine.scheduler.run_cycle()

    assert result.status == CycleStatus.CANCELLED
    assert engine.snapshots.current is None
    assert engine.cache.model_version is None

    # The next cycle is not affected by the earlier cancel
    engine.scheduler.event_store = InMemoryEventStore(scenario_events)
    assert engine.scheduler.run_cycle().status == CycleStatus.PUBLISHED


def test_state_reflects_running_stage(scenario_events, config, catalog):
    seen = []
    engine = None

    class ObservingStore(InMemoryEventStore):
        def list_events(self, since=None):
            seen.append(engine.scheduler.state)
            return super().list_events(since)

    engine = _engine(scenario_events, config, catalog, store=ObservingStore(scenario_events))
    engine.scheduler.run_cycle()

    assert seen == [SchedulerState.EXTRACTING]
    assert engine.scheduler.state == SchedulerState.IDLE


def test_triggers_during_a_cycle_coalesce_into_one(scenario_events, config, catalog):
    store = GatedEventStore(scenario_events)
    engine = _engine(scenario_events, config, catalog, store=store)
    results = []

    worker = threading.Thread(target=lambda: results.append(engine.scheduler.run_cycle()))
    worker.start()
    assert store.entered.wait(5)

    # Both requests collapse into a single follow-up cycle
    assert engine.scheduler.run_cycle() is None
    assert engine.scheduler.trigger() is False
    assert engine.scheduler.trigger() is False

    store.gate.set()
    worker.join(5)

    assert store.reads == 2
    assert engine.snapshots.version == 2
    assert results[0].model_version == 2


class TriggerOnReleaseLock:
    """Cycle lock that fires a trigger from another thread on its first release."""

    def __init__(self, scheduler):
        self._lock = threading.Lock()
        self.scheduler = scheduler
        self.triggered = []
        self._fired = False

    def acquire(self, blocking=True):
        return self._lock.acquire(blocking)

    def locked(self):
        return self._lock.locked()

    def release(self):
        if not self._fired:
            self._fired = True
            caller = threading.Thread(
                target=lambda: self.triggered.append(self.scheduler.trigger())
            )
            caller.start()
            caller.join(0.2)
        self._lock.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *exc):
        self.release()


def test_trigger_while_cycle_finishes_is_not_lost(engine):
    lock = TriggerOnReleaseLock(engine.scheduler)
    engine.scheduler._cycle_lock = lock

    assert engine.scheduler.run_cycle().model_version == 1

    deadline = time.time() + 5
    while (engine.snapshots.version != 2 or not lock.triggered) and time.time() < deadline:
        time.sleep(0.01)

    assert engine.snapshots.version == 2
    assert lock.triggered == [True]
    assert engine.scheduler._pending is False


def test_trigger_starts_cycle_in_background(engine):
    assert engine.scheduler.trigger() is True

    deadline = time.time() + 5
    while engine.snapshots.version is None and time.time() < deadline:
        time.sleep(0.01)

    assert engine.snapshots.version == 1


def test_listeners_receive_results_and_failures_are_contained(engine):
    received = []

    def broken_listener(result):
        raise RuntimeError("listener bug")

    engine.scheduler.add_listener(broken_listener)
    engine.scheduler.add_listener(received.append)

    result = engine.scheduler.run_cycle()

    assert received == [result]


def test_event_window_limits_events_read(config, catalog):
    windowed = config.model_copy(update={"event_window_days": 1})
    events = [
        make_event("u1", "p1", "view", hours_ago=2),
        make_event("u1", "p2", "view", hours_ago=3),
        make_event("u3", "p4", "purchase", hours_ago=48),
    ]
    engine = _engine(events, windowed, catalog)

    result = engine.scheduler.run_cycle()

    assert result.num_events == 2
    assert not engine.snapshots.current.is_known("u3")


def test_published_snapshot_is_persisted(scenario_events, catalog, tmp_path):
    config = EngineConfig(snapshot_dir=str(tmp_path / "models"))
    engine = _engine(scenario_events, config, catalog)

    engine.scheduler.run_cycle()

    assert snapshot_exists(config.snapshot_dir)


def test_restore_publishes_snapshot_and_cache(trained_engine, config, catalog):
    snapshot = trained_engine.snapshots.current
    fresh = _engine([], config, catalog)

    fresh.scheduler.restore(snapshot)

    assert fresh.snapshots.current is snapshot
    assert fresh.cache.model_version == 1
    assert fresh.recommend("u1", 2).cached


def test_start_and_stop_background_loop(scenario_events, catalog):
    config = EngineConfig(recompute_interval_seconds=0.05)
    engine = _engine(scenario_events, config, catalog)

    engine.start()
    try:
        assert engine.scheduler.is_running
        deadline = time.time() + 5
        while (engine.snapshots.version or 0) < 2 and time.time() < deadline:
            time.sleep(0.01)
        assert engine.snapshots.version >= 2
    finally:
        engine.stop()

    assert not engine.scheduler.is_running
    assert engine.scheduler.state == SchedulerState.IDLE


@pytest.mark.parametrize("similarity", ["cosine", "jaccard"])
def test_cycle_with_either_similarity(scenario_events, catalog, similarity):
    engine = _engine(scenario_events, EngineConfig(similarity=similarity), catalog)

    assert engine.scheduler.run_cycle().status == CycleStatus.PUBLISHED
    result = engine.recommend("u1", 2)
    assert result.personalized
    assert set(result.product_ids) == {"p1", "p3"}
