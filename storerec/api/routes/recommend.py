"""Recommendation endpoints for the StoreRec API.

This module exposes the serving operation: a ranked list of product ids for
a user, flagged as personalized or popularity fallback.
"""

import logging
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from storerec.api.metrics import metrics_service
from storerec.exceptions import StoreRecException
from storerec.recommender.engine import RecommendationEngine

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/recommendations",
    tags=["recommendations"],
)


class RecommendationResponse(BaseModel):
    """Response model for recommendation requests.

    Attributes:
        user_id: The user ID for which recommendations were generated.
        recommendations: Ranked list of recommended product IDs.
        personalized: False when the list is the popularity fallback.
        model_version: Version of the model snapshot used, if any.
    """

    model_config = ConfigDict(protected_namespaces=())

    user_id: str = Field(..., description="User ID for recommendations")
    recommendations: List[str] = Field(
        ..., description="Ranked list of recommended product IDs"
    )
    personalized: bool = Field(
        ..., description="Whether the list is personalized or a popularity fallback"
    )
    model_version: Optional[int] = Field(
        default=None, description="Model snapshot version, null before the first recompute"
    )


def get_engine(request: Request) -> RecommendationEngine:
    """Return the engine attached to the running application."""
    return request.app.state.engine


@router.get("/{user_id}", response_model=RecommendationResponse)
def get_recommendations(
    user_id: str,
    k: Optional[int] = Query(
        default=None, description="Number of recommendations (default: engine default_k)"
    ),
    engine: RecommendationEngine = Depends(get_engine),
) -> RecommendationResponse:
    """Get product recommendations for a user.

    Serves the precomputed list for the user when it is current, otherwise
    computes it on demand. Users without history get the most popular
    products.

    Args:
        user_id: User ID for which to generate recommendations.
        k: Number of recommendations to return.

    Returns:
        RecommendationResponse with the ranked product IDs.

    Raises:
        StoreRecException: If ``k`` is out of range (422) or the catalog is
            empty or unavailable (503).
        HTTPException: On unexpected internal errors (500).

    Example:
        GET /recommendations/u42?k=5
        Returns the top 5 product recommendations for user u42.
    """
    start_time = time.time()

    try:
        result = engine.recommend(user_id, k)
    except StoreRecException:
        raise
    except Exception as e:
        logger.error(
            f"Error generating recommendations for user {user_id}: {e}",
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate recommendations: {str(e)}",
        )

    metrics_service.record_recommendation(
        latency_ms=(time.time() - start_time) * 1000,
        personalized=result.personalized,
        cache_hit=result.cached,
    )

    return RecommendationResponse(
        user_id=result.user_id,
        recommendations=result.product_ids,
        personalized=result.personalized,
        model_version=result.model_version,
    )
