"""Serving coordinator.

Answers "what should this user see?" from the precomputed cache when it can,
computes on demand when the cache has no current entry, and falls back to the
popularity ranking whenever personalization is unavailable. Apart from an
empty or unreadable catalog, no error reaches the caller.
"""

import logging
import time
from dataclasses import dataclass
from typing import AbstractSet, List, Optional, Sequence

from storerec.config import EngineConfig
from storerec.exceptions import (
    InvalidParameterError,
    NoRecommendationsAvailable,
    StaleModelWarning,
    UnknownUserError,
)
from storerec.recommender.cache import InFlightRegistry, RecommendationCache, RecommendationEntry
from storerec.recommender.catalog import ProductCatalog
from storerec.recommender.model import ModelSnapshot, popular_products, score
from storerec.recommender.snapshots import SnapshotStore

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recommendations:
    """Result of one recommendation request.

    Attributes:
        user_id: User the list was produced for.
        product_ids: Ranked product ids.
        personalized: True if at least one product came from the model,
            False for a pure popularity fallback.
        model_version: Version of the snapshot used, None before the first
            recompute.
        cached: True if the list was served from the precomputed cache.
    """

    user_id: str
    product_ids: List[str]
    personalized: bool
    model_version: Optional[int]
    cached: bool = False


@dataclass(frozen=True)
class _Computed:
    product_ids: tuple
    personalized: bool


class ServingCoordinator:
    """Public recommendation entry point."""

    def __init__(
        self,
        snapshots: SnapshotStore,
        cache: RecommendationCache,
        catalog: ProductCatalog,
        config: Optional[EngineConfig] = None,
    ):
        self.snapshots = snapshots
        self.cache = cache
        self.catalog = catalog
        self.config = config or EngineConfig()
        self._in_flight = InFlightRegistry()

    def _validate_k(self, k: Optional[int]) -> int:
        if k is None:
            return self.config.default_k
        if k < 1:
            raise InvalidParameterError("k", k, "must be at least 1")
        if k > self.config.max_k:
            raise InvalidParameterError("k", k, f"must not exceed {self.config.max_k}")
        return k

    def recommend(self, user_id: str, k: Optional[int] = None) -> Recommendations:
        """Return up to ``k`` ranked products for ``user_id``.

        Serves the cached list when it was computed by the current model,
        otherwise computes the list on demand (one computation per user at a
        time) and stores it. Lists shorter than ``k`` are extended with
        popular products.

        Args:
            user_id: User to recommend for. Unknown users get the fallback.
            k: Number of products wanted (default: config ``default_k``).

        Returns:
            Recommendations with exactly ``k`` products whenever the catalog
            holds at least ``k`` eligible ones.

        Raises:
            InvalidParameterError: If ``k`` is out of range.
            NoRecommendationsAvailable: If the product catalog is empty or
                cannot be read.
        """
        start_time = time.time()
        k = self._validate_k(k)
        user_id = str(user_id)

        try:
            catalog_ids = self.catalog.list_product_ids()
        except Exception as e:
            logger.error(
                "Product catalog unavailable",
                extra={
                    "user_id": user_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise NoRecommendationsAvailable(
                user_id, reason="the product catalog is unavailable"
            ) from e
        if not catalog_ids:
            logger.error(
                "Product catalog is empty",
                extra={"user_id": user_id},
            )
            raise NoRecommendationsAvailable(user_id)

        snapshot = self.snapshots.current
        model_version = snapshot.version if snapshot is not None else None

        cached = False
        entry = None
        if snapshot is not None:
            try:
                entry = self.cache.get_current(user_id, model_version)
            except StaleModelWarning as w:
                logger.debug(f"Recomputing stale cache entry: {w.message}")

        if entry is not None:
            cached = True
            computed = _Computed(entry.product_ids, entry.personalized)
        else:
            # Keyed by version so a request never joins a computation
            # against a superseded snapshot
            computed = self._in_flight.run(
                (user_id, model_version),
                lambda: self._compute(user_id, snapshot, catalog_ids),
            )

        product_ids, personalized = self._finalize(
            user_id, computed, snapshot, catalog_ids, k
        )

        logger.info(
            "Recommendations served",
            extra={
                "user_id": user_id,
                "k": k,
                "num_recommendations": len(product_ids),
                "personalized": personalized,
                "cache_hit": cached,
                "model_version": model_version,
                "total_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )

        return Recommendations(
            user_id=user_id,
            product_ids=product_ids,
            personalized=personalized,
            model_version=model_version,
            cached=cached,
        )

    def _compute(
        self,
        user_id: str,
        snapshot: Optional[ModelSnapshot],
        catalog_ids: AbstractSet[str],
    ) -> _Computed:
        """Score a user on demand and store the result in the cache."""
        if snapshot is None:
            logger.info(
                "No model trained yet, using fallback",
                extra={"user_id": user_id, "strategy": "fallback"},
            )
            return _Computed((), False)

        try:
            product_ids = score(
                user_id, snapshot, self.config.cache_depth, eligible=catalog_ids
            )
        except UnknownUserError:
            # Not cached: the fallback is cheap and user ids are unbounded
            logger.info(
                "User has no interaction history, using fallback",
                extra={"user_id": user_id, "strategy": "fallback"},
            )
            return _Computed((), False)
        except Exception as e:
            # Scoring errors degrade to the fallback and are not cached
            logger.error(
                "Personalized scoring failed, using fallback",
                extra={
                    "user_id": user_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "model_version": snapshot.version,
                },
                exc_info=True,
            )
            return _Computed((), False)

        self.cache.put(user_id, product_ids, snapshot.version)
        return _Computed(tuple(product_ids), True)

    def _finalize(
        self,
        user_id: str,
        computed: _Computed,
        snapshot: Optional[ModelSnapshot],
        catalog_ids: AbstractSet[str],
        k: int,
    ) -> tuple:
        """Filter to the catalog, truncate to ``k`` and pad with popular items."""
        product_ids = [pid for pid in computed.product_ids if pid in catalog_ids][:k]
        personalized = computed.personalized and bool(product_ids)

        if len(product_ids) < k:
            purchased: Sequence[str] = ()
            if snapshot is not None:
                purchased = snapshot.purchased.get(user_id, frozenset())
            product_ids.extend(
                popular_products(
                    snapshot,
                    catalog_ids,
                    k - len(product_ids),
                    exclude=set(product_ids) | set(purchased),
                )
            )

        if not product_ids:
            # The user bought everything that is for sale
            product_ids = popular_products(snapshot, catalog_ids, k)

        return product_ids, personalized


def build_entries(
    snapshot: ModelSnapshot,
    catalog_ids: Optional[AbstractSet[str]],
    depth: int,
) -> List[RecommendationEntry]:
    """Score every known user against ``snapshot`` for a cache publish."""
    entries = []
    for user_id in snapshot.known_users():
        product_ids = score(user_id, snapshot, depth, eligible=catalog_ids)
        entries.append(
            RecommendationEntry(
                user_id=user_id,
                product_ids=tuple(product_ids),
                generated_at=snapshot.generated_at,
                model_version=snapshot.version,
                personalized=True,
            )
        )
    return entries
