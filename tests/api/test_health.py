"""Tests for the health endpoint and the domain error handler."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from querydesk.errors import ERROR_REGISTRY


def test_health(client: TestClient):
    with patch("querydesk.api.main.shutil.which", return_value="/usr/bin/npx"):
        response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["launcher"] == "available"
    assert data["credential_backend"] == "file"


def test_health_reports_missing_launcher(client: TestClient):
    with patch("querydesk.api.main.shutil.which", return_value=None):
        assert client.get("/health").json()["launcher"] == "missing"


def test_error_statuses_follow_registry(client: TestClient, chat_body):
    """Pre-stream errors use the status registered for their code."""
    chat_body["apiKey"] = ""
    response = client.post("/api/v1/chat", json=chat_body)
    assert response.status_code == ERROR_REGISTRY["E-1001"].status_code
    assert set(response.json()) == {"error", "error_code"}
