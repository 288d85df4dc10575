from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gitlab_review_mcp.config import Settings
from gitlab_review_mcp.http_app import create_app


@pytest.fixture
def client(clean_env) -> TestClient:
    settings = Settings(gitlab_token="t", transport="streamable-http", server_token="s3cret")
    # Not used as a context manager: the MCP session manager is never started.
    return TestClient(create_app(settings))


def test_health_is_public(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["server"] == "gitlab-review-mcp"
    assert body["tool_count"] > 0


def test_mcp_requires_bearer_token(client):
    response = client.post("/mcp", json={})
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json()["error"] == "unauthorized"


def test_mcp_rejects_wrong_token(client):
    response = client.post("/mcp", json={}, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token"


def test_production_without_token_is_unavailable(clean_env):
    clean_env.setenv("ENVIRONMENT", "production")
    app = create_app(Settings(gitlab_token="t", transport="streamable-http"))
    response = TestClient(app).post("/mcp", json={})
    assert response.status_code == 503
