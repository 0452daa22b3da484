"""Recommendation engine for StoreRec.

This module contains the event store and catalog adapters, signal
extraction, the item-based collaborative filtering model, the
recommendation cache, the serving coordinator and the recompute scheduler.
"""
