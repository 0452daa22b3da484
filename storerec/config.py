"""Configuration for the StoreRec engine.

All tunables of the recommendation engine live on ``EngineConfig``. Values
are read from ``STOREREC_*`` environment variables (a ``.env`` file is
honored) by ``load_config``; anything unset keeps its documented default.
"""

import json
import logging
import os
from typing import Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Configure module logger
logger = logging.getLogger(__name__)

ENV_PREFIX = "STOREREC_"

# Default base weights per event type (purchase > cart_add > view)
DEFAULT_EVENT_WEIGHTS: Dict[str, float] = {
    "view": 1.0,
    "cart_add": 3.0,
    "purchase": 5.0,
    "remove": 0.0,
}
DEFAULT_HALF_LIFE_DAYS = 14.0
DEFAULT_MAX_NEIGHBORS = 50
DEFAULT_K = 10
DEFAULT_MAX_K = 100
DEFAULT_RECOMPUTE_INTERVAL_SECONDS = 900.0


class EngineConfig(BaseModel):
    """Tunable parameters of the recommendation engine.

    Attributes:
        half_life_days: Half-life of the exponential time decay applied to
            event weights.
        event_weights: Base weight per event type, used when an event does
            not carry its own weight.
        similarity: Co-occurrence normalization, "cosine" or "jaccard".
        max_neighbors: Number of related products kept per product.
        default_k: Number of recommendations returned when none is requested.
        max_k: Largest number of recommendations a caller may request.
        cache_depth: Length of the precomputed list stored per user.
        recompute_interval_seconds: Cadence of the background recompute.
        recompute_on_start: Run a recompute cycle as soon as the scheduler
            starts.
        event_window_days: Only events newer than this window are read
            during a recompute. None reads the full log.
        snapshot_dir: Directory where published snapshots are persisted.
        events_csv: CSV event log backing the API's event store.
        catalog_csv: CSV product catalog backing the API's catalog.
        log_level: Root log level for the API.
        log_json: Emit JSON log lines from the API.
    """

    half_life_days: float = Field(default=DEFAULT_HALF_LIFE_DAYS, gt=0)
    event_weights: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_EVENT_WEIGHTS)
    )
    similarity: Literal["cosine", "jaccard"] = "cosine"
    max_neighbors: int = Field(default=DEFAULT_MAX_NEIGHBORS, ge=1)
    default_k: int = Field(default=DEFAULT_K, ge=1)
    max_k: int = Field(default=DEFAULT_MAX_K, ge=1)
    cache_depth: int = Field(default=DEFAULT_MAX_K, ge=1)
    recompute_interval_seconds: float = Field(
        default=DEFAULT_RECOMPUTE_INTERVAL_SECONDS, gt=0
    )
    recompute_on_start: bool = True
    event_window_days: Optional[float] = Field(default=None, gt=0)
    snapshot_dir: Optional[str] = None
    events_csv: Optional[str] = None
    catalog_csv: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("event_weights")
    @classmethod
    def _check_event_weights(cls, weights: Dict[str, float]) -> Dict[str, float]:
        missing = set(DEFAULT_EVENT_WEIGHTS) - set(weights)
        if missing:
            raise ValueError(f"event_weights missing types: {sorted(missing)}")
        negative = [name for name, value in weights.items() if value < 0]
        if negative:
            raise ValueError(f"event_weights must be non-negative: {negative}")
        return weights

    @model_validator(mode="after")
    def _check_k_bounds(self) -> "EngineConfig":
        if self.default_k > self.max_k:
            raise ValueError("default_k must not exceed max_k")
        return self

    @property
    def half_life_seconds(self) -> float:
        return self.half_life_days * 86400.0


def load_config(**overrides) -> EngineConfig:
    """Build an ``EngineConfig`` from the environment.

    Every field can be set with ``STOREREC_<FIELD_NAME>`` (for example
    ``STOREREC_HALF_LIFE_DAYS=7``). ``STOREREC_EVENT_WEIGHTS`` takes a JSON
    object. Keyword overrides win over the environment.

    Returns:
        Validated engine configuration.

    Raises:
        pydantic.ValidationError: If a value is out of range.
    """
    load_dotenv()

    values = {}
    for name in EngineConfig.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is None or raw == "":
            continue
        values[name] = json.loads(raw) if name == "event_weights" else raw

    values.update(overrides)
    config = EngineConfig(**values)

    logger.debug(f"Loaded engine configuration: {config.model_dump()}")
    return config
