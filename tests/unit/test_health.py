"""
Tests for the application entry point.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from src.api.main import app


def test_health() -> None:
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "analytics"}


def test_routers_mounted() -> None:
    paths = {route.path for route in app.routes}

    assert "/api/analytics/track/visit" in paths
    assert "/api/analytics/track/pageview/{page_view_id}/update" in paths
    assert "/api/analytics/overview" in paths
    assert "/api/analytics/express-detail" in paths
