"""Tests for the FastAPI application endpoints.

This module contains integration tests for the StoreRec API endpoints,
including health checks, recommendation, recompute and status endpoints.
"""

import logging
import time

import pytest
from fastapi.testclient import TestClient

from storerec.api.logging_config import JSONFormatter
from storerec.api.main import create_app
from storerec.api.metrics import metrics_service


@pytest.fixture
def client(trained_engine):
    """Test client over an engine with one published model."""
    metrics_service.reset()
    return TestClient(create_app(trained_engine, start_scheduler=False))


@pytest.fixture
def untrained_client(engine):
    metrics_service.reset()
    return TestClient(create_app(engine, start_scheduler=False))


def test_ping_endpoint(client):
    """Test that the /ping endpoint returns correct status and JSON."""
    response = client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_recommendations_endpoint_returns_response(client):
    """Test that /recommendations/{user_id} returns a valid response structure."""
    response = client.get("/recommendations/u1?k=2")

    assert response.status_code == 200
    data = response.json()
    assert data == {
        "user_id": "u1",
        "recommendations": ["p3", "p1"],
        "personalized": True,
        "model_version": 1,
    }


def test_recommendations_endpoint_default_k(client):
    response = client.get("/recommendations/u2")

    assert response.status_code == 200
    assert len(response.json()["recommendations"]) == 5


def test_recommendations_endpoint_unknown_user_falls_back(client):
    """Unknown users get the popularity fallback, never an error."""
    response = client.get("/recommendations/somebody-new?k=3")

    assert response.status_code == 200
    data = response.json()
    assert data["personalized"] is False
    assert data["recommendations"] == ["p1", "p2", "p3"]


def test_recommendations_before_first_recompute(untrained_client):
    response = untrained_client.get("/recommendations/u1?k=2")

    assert response.status_code == 200
    data = response.json()
    assert data["model_version"] is None
    assert data["personalized"] is False
    assert data["recommendations"] == ["p1", "p2"]


def test_request_id_header(client):
    """Test that every response carries a request id."""
    response = client.get("/ping")

    assert "X-Request-ID" in response.headers
    assert len(response.headers["X-Request-ID"]) > 0


def test_status_endpoint(client):
    """Test that the /status endpoint reports model and scheduler state."""
    response = client.get("/status")

    assert response.status_code == 200
    data = response.json()

    assert data["model_loaded"] is True
    assert data["model_version"] == 1
    assert data["num_users"] == 2
    assert data["num_products"] == 3
    assert data["cache_entries"] == 2
    assert data["scheduler_state"] == "idle"
    assert data["scheduler_running"] is False
    assert data["last_cycle"]["status"] == "published"
    assert isinstance(data["generated_at"], str)


def test_status_endpoint_without_model(untrained_client):
    data = untrained_client.get("/status").json()

    assert data["model_loaded"] is False
    assert data["model_version"] is None
    assert data["generated_at"] is None
    assert data["last_cycle"] is None


def test_recompute_endpoint_starts_cycle(client, trained_engine):
    response = client.post("/recompute")

    assert response.status_code == 202
    assert response.json()["status"] == "started"

    deadline = time.time() + 5
    while trained_engine.snapshots.version < 2 and time.time() < deadline:
        time.sleep(0.01)
    assert trained_engine.snapshots.version == 2


def test_recompute_endpoint_coalesces_while_running(client, trained_engine):
    trained_engine.scheduler._cycle_lock.acquire()
    try:
        response = client.post("/recompute")
    finally:
        trained_engine.scheduler._cycle_lock.release()

    assert response.status_code == 202
    assert response.json() == {"status": "coalesced", "model_version": 1}


def test_metrics_endpoint(client):
    """Test that /metrics counts served requests."""
    client.get("/recommendations/u1?k=2")
    client.get("/recommendations/u1?k=2")
    client.get("/recommendations/stranger?k=2")

    response = client.get("/metrics")

    assert response.status_code == 200
    data = response.json()
    assert data["request_count"] == 3
    assert data["personalized_count"] == 2
    assert data["fallback_count"] == 1
    assert data["cache_hit_count"] == 2
    assert data["average_latency_ms"] >= 0


def test_metrics_count_recompute_outcomes(client, trained_engine):
    trained_engine.scheduler.run_cycle()

    data = client.get("/metrics").json()

    assert data["recompute_cycles"] == {"published": 1}


def test_importing_app_leaves_logging_alone():
    """Test that building the app does not replace the root log handlers."""
    import storerec.api.main  # noqa: F401

    root = logging.getLogger()
    assert not any(isinstance(h.formatter, JSONFormatter) for h in root.handlers)


def test_lifespan_configures_json_logging(engine):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        app = create_app(engine, start_scheduler=False, configure_logging=True)
        with TestClient(app):
            assert any(isinstance(h.formatter, JSONFormatter) for h in root.handlers)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
