"""Item-based collaborative filtering model.

Training turns an interaction matrix into a ``ModelSnapshot``: for every
product a ranked list of related products, where relatedness is the
co-occurrence of two products in the same users' histories normalized by
item popularity (cosine over the weighted matrix, or Jaccard over the
binarized one). Scoring a user sums, for each candidate, its affinity to the
products the user already interacted with.

Snapshots are immutable and rebuilt wholesale every recompute cycle; there
are no per-event updates.
"""

import heapq
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AbstractSet, Dict, FrozenSet, Iterable, List, Optional, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from sklearn.metrics.pairwise import cosine_similarity

from storerec.config import EngineConfig
from storerec.exceptions import UnknownUserError
from storerec.recommender.signals import InteractionMatrix

# Configure module logger
logger = logging.getLogger(__name__)

Neighbors = Tuple[Tuple[str, float], ...]


@dataclass(frozen=True)
class ModelSnapshot:
    """Versioned, immutable output of one recompute cycle.

    Attributes:
        version: Monotonically increasing model version.
        generated_at: Reference time of the events the snapshot was built from.
        affinity: For each product, related products with their affinity,
            sorted by descending affinity then product id.
        popularity: Time-decayed popularity per product.
        popular_ranking: Products sorted by descending popularity, then id.
        user_items: Products each known user interacted with.
        purchased: Products each user purchased.
        similarity: Normalization the affinities were computed with.
    """

    version: int
    generated_at: datetime
    affinity: Dict[str, Neighbors]
    popularity: Dict[str, float]
    popular_ranking: Tuple[str, ...]
    user_items: Dict[str, Tuple[str, ...]]
    purchased: Dict[str, FrozenSet[str]]
    similarity: str = "cosine"

    @property
    def num_users(self) -> int:
        return len(self.user_items)

    @property
    def num_products(self) -> int:
        return len(self.popularity)

    def known_users(self) -> Tuple[str, ...]:
        return tuple(sorted(self.user_items))

    def is_known(self, user_id: str) -> bool:
        return bool(self.user_items.get(user_id))

    def related(self, product_id: str, top_n: Optional[int] = None) -> Neighbors:
        """Related products of ``product_id`` (empty for cold products)."""
        neighbors = self.affinity.get(product_id, ())
        return neighbors if top_n is None else neighbors[:top_n]


def _jaccard_similarity(matrix: csr_matrix) -> csr_matrix:
    binary = (matrix > 0).astype(np.float64)
    co = (binary.T @ binary).tocoo()
    counts = np.asarray(binary.sum(axis=0), dtype=np.float64).ravel()
    union = counts[co.row] + counts[co.col] - co.data
    return csr_matrix((co.data / union, (co.row, co.col)), shape=co.shape)


def compute_item_affinity(
    matrix: InteractionMatrix,
    similarity: str = "cosine",
    max_neighbors: int = 50,
) -> Dict[str, Neighbors]:
    """Compute the ranked related-product lists for every product.

    Args:
        matrix: Interaction matrix to learn co-occurrence from.
        similarity: "cosine" (weighted) or "jaccard" (binarized).
        max_neighbors: Number of related products kept per product.

    Returns:
        Mapping from product id to its related products. Self-affinity and
        non-positive affinities are dropped.

    Raises:
        ValueError: If the similarity name is not supported.
    """
    if similarity == "cosine":
        # Columns are products; cosine normalizes by each product's weight norm
        sim = cosine_similarity(matrix.matrix.T, dense_output=False)
    elif similarity == "jaccard":
        sim = _jaccard_similarity(matrix.matrix)
    else:
        raise ValueError(f"Unsupported similarity: {similarity}")

    sim = csr_matrix(sim)
    sim.sort_indices()

    product_ids = matrix.product_ids
    affinity: Dict[str, Neighbors] = {}
    for idx, product_id in enumerate(product_ids):
        start, end = sim.indptr[idx], sim.indptr[idx + 1]
        pairs = [
            (product_ids[col], float(score))
            for col, score in zip(sim.indices[start:end], sim.data[start:end])
            if col != idx and score > 0
        ]
        pairs.sort(key=lambda x: (-x[1], x[0]))
        affinity[product_id] = tuple(pairs[:max_neighbors])

    return affinity


def train(
    matrix: InteractionMatrix,
    version: int = 1,
    config: Optional[EngineConfig] = None,
) -> ModelSnapshot:
    """Train a model snapshot from an interaction matrix.

    Deterministic: the same matrix and configuration always produce an
    identical snapshot.

    Args:
        matrix: Interaction matrix from ``signals.extract``.
        version: Version number stamped on the snapshot.
        config: Engine configuration (similarity, neighbor count).

    Returns:
        The trained ModelSnapshot.

    Example:
        >>> matrix = extract(events, as_of=now)
        >>> snapshot = train(matrix, version=3)
        >>> score("u1", snapshot, k=5)
    """
    config = config or EngineConfig()

    logger.info(
        f"Training item affinity model v{version} "
        f"({config.similarity}, max_neighbors={config.max_neighbors})"
    )

    affinity = compute_item_affinity(
        matrix,
        similarity=config.similarity,
        max_neighbors=config.max_neighbors,
    )
    popularity = matrix.popularity_by_product()
    popular_ranking = tuple(
        pid for pid, _ in sorted(popularity.items(), key=lambda x: (-x[1], x[0]))
    )
    user_items = {user_id: matrix.user_items(user_id) for user_id in matrix.user_ids}

    snapshot = ModelSnapshot(
        version=version,
        generated_at=matrix.as_of,
        affinity=affinity,
        popularity=popularity,
        popular_ranking=popular_ranking,
        user_items=user_items,
        purchased=dict(matrix.purchased),
        similarity=config.similarity,
    )

    logger.info(
        "Model training completed",
        extra={
            "model_version": version,
            "num_users": snapshot.num_users,
            "num_products": snapshot.num_products,
            "num_affinity_pairs": sum(len(n) for n in affinity.values()),
        },
    )
    return snapshot


def score(
    user_id: str,
    snapshot: ModelSnapshot,
    k: int,
    eligible: Optional[AbstractSet[str]] = None,
) -> List[str]:
    """Rank products for a user against a snapshot.

    Sums each candidate's affinity to the products the user interacted with,
    drops products the user purchased (and products outside ``eligible``),
    and ranks by descending score, then descending popularity, then
    product id.

    Args:
        user_id: User to score.
        snapshot: Model snapshot to score against.
        k: Maximum number of products to return.
        eligible: Optional set of currently sellable product ids.

    Returns:
        Up to ``k`` unique product ids. Products without positive affinity
        to the user's history are never returned.

    Raises:
        ValueError: If ``k`` is less than 1.
        UnknownUserError: If the user has no interaction history.
    """
    if k < 1:
        raise ValueError(f"k must be positive, got {k}")

    history = snapshot.user_items.get(user_id)
    if not history:
        raise UnknownUserError(user_id)

    purchased = snapshot.purchased.get(user_id, frozenset())
    totals: Dict[str, float] = {}
    for item in history:
        for related_id, affinity in snapshot.affinity.get(item, ()):
            if related_id in purchased:
                continue
            if eligible is not None and related_id not in eligible:
                continue
            totals[related_id] = totals.get(related_id, 0.0) + affinity

    popularity = snapshot.popularity
    top = heapq.nsmallest(
        k,
        ((-total, -popularity.get(pid, 0.0), pid) for pid, total in totals.items() if total > 0),
    )
    return [pid for _, _, pid in top]


def popular_products(
    snapshot: Optional[ModelSnapshot],
    catalog_ids: Optional[AbstractSet[str]],
    k: int,
    exclude: Iterable[str] = (),
) -> List[str]:
    """Top-k globally popular products, the non-personalized fallback.

    Products are ranked by descending popularity then product id. Catalog
    products without recorded popularity follow, by product id. Without a
    snapshot the catalog alone is ranked by product id.

    Args:
        snapshot: Current snapshot, or None if no model was trained yet.
        catalog_ids: Currently sellable products. None disables the catalog
            filter (popular products only).
        k: Maximum number of products to return.
        exclude: Products to leave out.

    Returns:
        Up to ``k`` unique product ids.
    """
    if k < 1:
        raise ValueError(f"k must be positive, got {k}")

    excluded = set(exclude)
    result: List[str] = []

    if snapshot is not None:
        for pid in snapshot.popular_ranking:
            if pid in excluded:
                continue
            if catalog_ids is not None and pid not in catalog_ids:
                continue
            result.append(pid)
            if len(result) == k:
                return result

    if catalog_ids is None:
        return result

    popularity = snapshot.popularity if snapshot is not None else {}
    cold = (pid for pid in catalog_ids if pid not in popularity and pid not in excluded)
    result.extend(heapq.nsmallest(k - len(result), cold))
    return result
