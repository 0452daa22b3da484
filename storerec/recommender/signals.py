"""Signal extraction from the interaction log.

Turns a sequence of raw events into a sparse user-item interaction matrix of
implicit-feedback weights. Each event contributes its type weight (or its own
explicit weight) scaled by an exponential time decay, so recent interactions
count more than old ones. Per-item popularity, the basis of the fallback
ranking, is the column sum of that matrix.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

from storerec.config import EngineConfig
from storerec.exceptions import InsufficientDataError
from storerec.recommender.events import Event, EventType, normalize_event, parse_timestamp

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class InteractionMatrix:
    """Time-decayed user-item interaction weights for one recompute cycle.

    Attributes:
        matrix: CSR matrix of shape (n_users, n_products). Only positive
            weights are stored.
        user_ids: Row labels, sorted.
        product_ids: Column labels, sorted.
        popularity: Per-product sum of weights, aligned with ``product_ids``.
        purchased: Products each user has purchased.
        as_of: Reference time the decay was computed against.
    """

    matrix: csr_matrix
    user_ids: Tuple[str, ...]
    product_ids: Tuple[str, ...]
    popularity: np.ndarray
    purchased: Dict[str, FrozenSet[str]]
    as_of: datetime
    user_index: Dict[str, int] = field(init=False, repr=False)
    product_index: Dict[str, int] = field(init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(
            self, "user_index", {uid: idx for idx, uid in enumerate(self.user_ids)}
        )
        object.__setattr__(
            self,
            "product_index",
            {pid: idx for idx, pid in enumerate(self.product_ids)},
        )

    @property
    def nnz(self) -> int:
        return int(self.matrix.nnz)

    def weight(self, user_id: str, product_id: str) -> float:
        """Accumulated weight of one user-product pair (0.0 if absent)."""
        row = self.user_index.get(user_id)
        col = self.product_index.get(product_id)
        if row is None or col is None:
            return 0.0
        return float(self.matrix[row, col])

    def user_items(self, user_id: str) -> Tuple[str, ...]:
        """Products the user interacted with, sorted by product id."""
        row = self.user_index.get(user_id)
        if row is None:
            return ()
        start, end = self.matrix.indptr[row], self.matrix.indptr[row + 1]
        return tuple(self.product_ids[col] for col in sorted(self.matrix.indices[start:end]))

    def popularity_by_product(self) -> Dict[str, float]:
        return {pid: float(w) for pid, w in zip(self.product_ids, self.popularity)}


def decay(age_seconds: Union[float, np.ndarray], half_life_seconds: float):
    """Exponential half-life decay factor.

    Negative ages (events after the reference time) are clamped to zero so
    the factor never exceeds 1.
    """
    age = np.maximum(age_seconds, 0.0)
    return np.power(0.5, age / half_life_seconds)


def _events_frame(events: Iterable[Union[Event, Mapping[str, Any]]]) -> pd.DataFrame:
    normalized = [normalize_event(e) for e in events]
    return pd.DataFrame(
        {
            "user_id": [e.user_id for e in normalized],
            "product_id": [e.product_id for e in normalized],
            "type": [e.type.value for e in normalized],
            "ts": np.array([e.timestamp.timestamp() for e in normalized], dtype=np.float64),
            "weight": np.array(
                [np.nan if e.weight is None else e.weight for e in normalized],
                dtype=np.float64,
            ),
        }
    )


def extract(
    events: Iterable[Union[Event, Mapping[str, Any]]],
    as_of: Union[datetime, str, float],
    config: Optional[EngineConfig] = None,
) -> InteractionMatrix:
    """Build the interaction matrix from a sequence of events.

    Each event contributes ``base_weight(type) * decay(as_of - timestamp)``,
    where an explicit event weight replaces the per-type base weight.
    Contributions are summed per (user, product). Events after ``as_of`` are
    ignored and pairs that accumulate no weight are dropped.

    The result is a pure function of ``events``, ``as_of`` and ``config``.

    Args:
        events: Canonical events or raw records accepted by ``normalize_event``.
        as_of: Reference time for the decay.
        config: Engine configuration (weights, half-life). Defaults apply
            when omitted.

    Returns:
        InteractionMatrix for the given events.

    Raises:
        InsufficientDataError: If there are no events, or none of them carries
            positive weight at ``as_of``.
    """
    config = config or EngineConfig()
    as_of = parse_timestamp(as_of)

    df = _events_frame(events)
    if df.empty:
        raise InsufficientDataError("No events to extract signals from")

    as_of_ts = as_of.timestamp()
    df = df[df["ts"] <= as_of_ts]
    if df.empty:
        raise InsufficientDataError(
            "No events at or before the reference time", as_of=as_of.isoformat()
        )

    # Explicit weights win over the per-type defaults
    base = df["type"].map(config.event_weights).astype(np.float64)
    base = df["weight"].where(df["weight"].notna(), base)
    effective = base * decay(as_of_ts - df["ts"], config.half_life_seconds)
    df = df.assign(effective=effective)

    grouped = df.groupby(["user_id", "product_id"], sort=True)["effective"].sum()
    grouped = grouped[grouped > 0]
    if grouped.empty:
        raise InsufficientDataError(
            "No events with positive weight", num_events=int(len(df))
        )

    user_ids = tuple(sorted(grouped.index.get_level_values("user_id").unique()))
    product_ids = tuple(sorted(grouped.index.get_level_values("product_id").unique()))

    rows = pd.Index(user_ids).get_indexer(grouped.index.get_level_values("user_id"))
    cols = pd.Index(product_ids).get_indexer(grouped.index.get_level_values("product_id"))

    matrix = csr_matrix(
        (grouped.to_numpy(dtype=np.float64), (rows, cols)),
        shape=(len(user_ids), len(product_ids)),
        dtype=np.float64,
    )
    matrix.sort_indices()

    popularity = np.asarray(matrix.sum(axis=0), dtype=np.float64).ravel()

    purchases = df[df["type"] == EventType.PURCHASE.value]
    purchased = {
        user_id: frozenset(group["product_id"])
        for user_id, group in purchases.groupby("user_id", sort=True)
    }

    logger.info(
        "Extracted interaction matrix",
        extra={
            "num_events": int(len(df)),
            "num_users": len(user_ids),
            "num_products": len(product_ids),
            "non_zero_entries": int(matrix.nnz),
            "as_of": as_of.isoformat(),
        },
    )

    return InteractionMatrix(
        matrix=matrix,
        user_ids=user_ids,
        product_ids=product_ids,
        popularity=popularity,
        purchased=purchased,
        as_of=as_of,
    )
