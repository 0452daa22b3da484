"""Shared fixtures for the StoreRec test suite."""

import random
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from storerec.config import EngineConfig
from storerec.recommender.catalog import InMemoryProductCatalog
from storerec.recommender.engine import RecommendationEngine, build_engine
from storerec.recommender.events import Event, EventType, InMemoryEventStore

BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_event(user_id, product_id, event_type, hours_ago=1.0, weight=None) -> Event:
    """Build an event ``hours_ago`` hours before BASE_TIME."""
    return Event(
        user_id=str(user_id),
        product_id=str(product_id),
        type=EventType(event_type),
        timestamp=BASE_TIME - timedelta(hours=hours_ago),
        weight=weight,
    )


def random_events(
    num_users: int = 20,
    num_products: int = 30,
    num_events: int = 300,
    seed: int = 42,
) -> List[Event]:
    """Generate a reproducible random event log."""
    rng = random.Random(seed)
    types = ["view", "view", "view", "cart_add", "purchase"]
    return [
        make_event(
            f"u{rng.randint(1, num_users)}",
            f"p{rng.randint(1, num_products)}",
            rng.choice(types),
            hours_ago=rng.uniform(0.0, 24 * 60),
        )
        for _ in range(num_events)
    ]


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(half_life_days=14, default_k=5, max_k=20, cache_depth=20)


@pytest.fixture
def scenario_events() -> List[Event]:
    """u1 viewed p1 and bought p2; u2 bought p1 and viewed p3."""
    return [
        make_event("u1", "p1", "view", hours_ago=4),
        make_event("u1", "p2", "purchase", hours_ago=3),
        make_event("u2", "p1", "purchase", hours_ago=2),
        make_event("u2", "p3", "view", hours_ago=1),
    ]


@pytest.fixture
def catalog() -> InMemoryProductCatalog:
    return InMemoryProductCatalog([f"p{i}" for i in range(1, 8)])


@pytest.fixture
def engine(scenario_events, catalog, config) -> RecommendationEngine:
    """Engine over the scenario events; no recompute has run yet."""
    built = build_engine(
        config,
        event_store=InMemoryEventStore(scenario_events),
        catalog=catalog,
    )
    built.scheduler.clock = lambda: BASE_TIME
    return built


@pytest.fixture
def trained_engine(engine) -> RecommendationEngine:
    """Engine after one published recompute cycle."""
    engine.scheduler.run_cycle()
    return engine
