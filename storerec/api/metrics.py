"""Metrics service for tracking serving and recompute activity.

Singleton service counting recommendation requests, how they were served and
their latency, plus the outcomes of recompute cycles.
"""

import threading
from collections import Counter
from typing import Dict


class MetricsService:
    """Singleton service for tracking API metrics.

    Thread-safe counters and latency tracking for recommendation requests.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize metrics counters."""
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._reset_counters()
        self._initialized = True

    def _reset_counters(self) -> None:
        self._request_count = 0
        self._personalized_count = 0
        self._fallback_count = 0
        self._cache_hit_count = 0
        self._total_latency_ms = 0.0
        self._min_latency_ms = float("inf")
        self._max_latency_ms = 0.0
        self._recompute_outcomes: Counter = Counter()

    def record_recommendation(
        self, latency_ms: float, personalized: bool, cache_hit: bool
    ) -> None:
        """Record a served recommendation request.

        Args:
            latency_ms: Latency in milliseconds
            personalized: Whether the list came from the model
            cache_hit: Whether the list was served from the cache
        """
        with self._lock:
            self._request_count += 1
            if personalized:
                self._personalized_count += 1
            else:
                self._fallback_count += 1
            if cache_hit:
                self._cache_hit_count += 1

            self._total_latency_ms += latency_ms
            if latency_ms < self._min_latency_ms:
                self._min_latency_ms = latency_ms
            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms

    def record_recompute(self, status: str) -> None:
        """Record the outcome of a recompute cycle."""
        with self._lock:
            self._recompute_outcomes[status] += 1

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - request_count: Total number of recommendation requests
            - personalized_count / fallback_count: How requests were answered
            - cache_hit_count: Requests served from the precomputed cache
            - average_latency_ms, min_latency_ms, max_latency_ms
            - recompute_cycles: Count of recompute cycles per outcome
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._request_count
                if self._request_count > 0
                else 0.0
            )

            return {
                "request_count": self._request_count,
                "personalized_count": self._personalized_count,
                "fallback_count": self._fallback_count,
                "cache_hit_count": self._cache_hit_count,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": round(self._min_latency_ms, 2) if self._min_latency_ms != float("inf") else 0.0,
                "max_latency_ms": round(self._max_latency_ms, 2),
                "recompute_cycles": dict(self._recompute_outcomes),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._reset_counters()


# Global singleton instance
metrics_service = MetricsService()
