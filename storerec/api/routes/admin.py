"""Administrative endpoints for the StoreRec API.

Forcing a recompute cycle and inspecting the engine's state.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from storerec.api.metrics import metrics_service
from storerec.api.routes.recommend import get_engine
from storerec.recommender.engine import RecommendationEngine

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


class RecomputeResponse(BaseModel):
    """Response model for recompute triggers."""

    model_config = ConfigDict(protected_namespaces=())

    status: str = Field(..., description="'started' or 'coalesced' into a running cycle")
    model_version: Optional[int] = Field(
        default=None, description="Model version currently being served"
    )


class StatusResponse(BaseModel):
    """Response model for engine status."""

    model_config = ConfigDict(protected_namespaces=())

    model_loaded: bool
    model_version: Optional[int] = None
    generated_at: Optional[str] = None
    num_users: int = 0
    num_products: int = 0
    cache_entries: int = 0
    scheduler_state: str
    scheduler_running: bool
    last_cycle: Optional[Dict[str, Any]] = None


@router.post(
    "/recompute",
    response_model=RecomputeResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def trigger_recompute(
    engine: RecommendationEngine = Depends(get_engine),
) -> RecomputeResponse:
    """Force an immediate recompute cycle.

    Idempotent while a cycle is running: the request is folded into a single
    follow-up cycle instead of queueing another one.
    """
    started = engine.scheduler.trigger()
    logger.info(f"Recompute requested ({'started' if started else 'coalesced'})")
    return RecomputeResponse(
        status="started" if started else "coalesced",
        model_version=engine.snapshots.version,
    )


@router.get("/status", response_model=StatusResponse)
def get_status(engine: RecommendationEngine = Depends(get_engine)) -> StatusResponse:
    """Report the served model, cache size and scheduler state."""
    snapshot = engine.snapshots.current
    last = engine.scheduler.last_result

    last_cycle = None
    if last is not None:
        last_cycle = {
            "status": last.status.value,
            "started_at": last.started_at.isoformat(),
            "finished_at": last.finished_at.isoformat(),
            "duration_ms": last.duration_ms,
            "model_version": last.model_version,
            "num_events": last.num_events,
            "error": last.error,
        }

    return StatusResponse(
        model_loaded=snapshot is not None,
        model_version=snapshot.version if snapshot else None,
        generated_at=snapshot.generated_at.isoformat() if snapshot else None,
        num_users=snapshot.num_users if snapshot else 0,
        num_products=snapshot.num_products if snapshot else 0,
        cache_entries=len(engine.cache),
        scheduler_state=engine.scheduler.state.value,
        scheduler_running=engine.scheduler.is_running,
        last_cycle=last_cycle,
    )


@router.get("/metrics")
def get_metrics() -> Dict[str, Any]:
    """Return serving and recompute counters."""
    return metrics_service.get_metrics()
