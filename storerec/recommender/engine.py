"""Engine assembly.

Wires the event store, catalog, snapshot store, cache, serving coordinator
and recompute scheduler together from an ``EngineConfig``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from storerec.config import EngineConfig
from storerec.recommender.cache import RecommendationCache
from storerec.recommender.catalog import CsvProductCatalog, InMemoryProductCatalog, ProductCatalog
from storerec.recommender.events import CsvEventStore, EventStore, InMemoryEventStore
from storerec.recommender.scheduler import RecomputeScheduler
from storerec.recommender.serving import ServingCoordinator
from storerec.recommender.snapshots import SnapshotStore, load_snapshot, snapshot_exists

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class RecommendationEngine:
    """All engine components sharing one configuration."""

    config: EngineConfig
    event_store: EventStore
    catalog: ProductCatalog
    snapshots: SnapshotStore
    cache: RecommendationCache
    coordinator: ServingCoordinator
    scheduler: RecomputeScheduler

    def recommend(self, user_id: str, k: Optional[int] = None):
        return self.coordinator.recommend(user_id, k)

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop(timeout=30)


def build_engine(
    config: Optional[EngineConfig] = None,
    event_store: Optional[EventStore] = None,
    catalog: Optional[ProductCatalog] = None,
) -> RecommendationEngine:
    """Create a recommendation engine.

    Event store and catalog default to the CSV files named in the
    configuration, or to empty in-memory stores when none are configured.
    When ``snapshot_dir`` holds a persisted snapshot it is restored so the
    engine serves personalized results before its first recompute.

    Args:
        config: Engine configuration (default: ``EngineConfig()``).
        event_store: Event log adapter to read from.
        catalog: Product catalog adapter.

    Returns:
        The assembled RecommendationEngine. The background scheduler is not
        started.
    """
    config = config or EngineConfig()

    if event_store is None:
        if config.events_csv:
            event_store = CsvEventStore(config.events_csv)
        else:
            event_store = InMemoryEventStore()
    if catalog is None:
        if config.catalog_csv:
            catalog = CsvProductCatalog(config.catalog_csv)
        else:
            catalog = InMemoryProductCatalog()

    snapshots = SnapshotStore()
    cache = RecommendationCache()
    coordinator = ServingCoordinator(snapshots, cache, catalog, config)
    scheduler = RecomputeScheduler(event_store, catalog, snapshots, cache, config)

    if config.snapshot_dir and snapshot_exists(config.snapshot_dir):
        try:
            scheduler.restore(load_snapshot(config.snapshot_dir))
        except Exception as e:
            logger.error(
                f"Failed to restore model snapshot from {config.snapshot_dir}: {e}",
                exc_info=True,
            )

    logger.info(
        "Recommendation engine ready",
        extra={
            "event_store": type(event_store).__name__,
            "catalog": type(catalog).__name__,
            "model_version": snapshots.version,
        },
    )

    return RecommendationEngine(
        config=config,
        event_store=event_store,
        catalog=catalog,
        snapshots=snapshots,
        cache=cache,
        coordinator=coordinator,
        scheduler=scheduler,
    )
