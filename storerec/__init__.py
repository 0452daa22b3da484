"""StoreRec: recommendation serving engine for a storefront.

This package ingests user interaction events (views, cart-adds, purchases),
periodically recomputes an item-based collaborative filtering model from
them, and serves ranked, personalized product lists from a precomputed cache
with a popularity fallback.

Modules:
    api: FastAPI application and REST API endpoints
    recommender: Event ingestion, model recompute and serving logic
"""

__version__ = "0.1.0"
