"""Tests for the credential management endpoints."""

from fastapi.testclient import TestClient

from tests.helpers.constants import TEST_PASSWORD, TEST_REF


class TestStatus:
    def test_empty_store(self, client: TestClient):
        response = client.get("/api/v1/credentials")
        assert response.status_code == 200
        assert response.json() == {"hasApiKey": False, "projectRefs": [], "backend": "memory"}

    def test_never_returns_secrets(self, client: TestClient, store):
        store.set_api_key("sk-ant-secret")
        store.set_password(TEST_REF, TEST_PASSWORD)

        response = client.get("/api/v1/credentials")

        assert response.json()["projectRefs"] == [TEST_REF]
        assert "sk-ant-secret" not in response.text
        assert TEST_PASSWORD not in response.text


class TestApiKey:
    def test_set_api_key(self, client: TestClient, store):
        response = client.put("/api/v1/credentials/api-key", json={"apiKey": "sk-ant-abc"})
        assert response.status_code == 200
        assert response.json() == {"hasApiKey": True}
        assert store.get_api_key() == "sk-ant-abc"

    def test_rejects_wrong_prefix(self, client: TestClient, store):
        response = client.put("/api/v1/credentials/api-key", json={"apiKey": "not-a-key"})
        assert response.status_code == 422
        assert store.has_api_key() is False


class TestPasswords:
    def test_has_password_false_then_true(self, client: TestClient):
        url = f"/api/v1/credentials/projects/{TEST_REF}/password"
        assert client.get(url).json() == {"projectRef": TEST_REF, "hasPassword": False}

        response = client.put(url, json={"password": TEST_PASSWORD})

        assert response.status_code == 200
        assert response.json() == {"projectRef": TEST_REF, "hasPassword": True}
        assert client.get(url).json()["hasPassword"] is True

    def test_empty_password_rejected(self, client: TestClient):
        response = client.put(f"/api/v1/credentials/projects/{TEST_REF}/password", json={"password": ""})
        assert response.status_code == 422

    def test_delete_password(self, client: TestClient, store):
        store.set_password(TEST_REF, TEST_PASSWORD)
        response = client.delete(f"/api/v1/credentials/projects/{TEST_REF}/password")
        assert response.json()["hasPassword"] is False
        assert store.has_password(TEST_REF) is False


def test_reset(client: TestClient, store):
    store.set_api_key("sk-ant-abc")
    store.set_password(TEST_REF, TEST_PASSWORD)

    response = client.post("/api/v1/credentials/reset")

    assert response.json() == {"hasApiKey": False, "projectRefs": [], "backend": "memory"}
    assert store.has_password(TEST_REF) is False
