"""Pytest fixtures for API tests.

Provides a TestClient whose collaborators are overridden with in-memory
doubles: a memory credential store, FakeGateway and ScriptedModel.
"""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from querydesk.api.dependencies import (
    get_credential_store,
    get_orchestration_loop,
    get_settings,
    reset_dependencies,
)
from querydesk.api.main import app
from querydesk.config import QueryDeskConfig
from querydesk.orchestrator.loop import OrchestrationLoop
from querydesk.services.credential_store import CredentialStore
from tests.helpers import FakeGateway, ScriptedModel, text_step
from tests.helpers.constants import TEST_ACCESS_TOKEN, TEST_API_KEY, TEST_BASE_URL, TEST_REF


@pytest.fixture
def scripted_model() -> ScriptedModel:
    """Model answering with a single text step. Tests may replace its steps."""
    return ScriptedModel([text_step("You have **42** users.")])


@pytest.fixture
def connections() -> MagicMock:
    source = MagicMock()
    source.get_connection_string = AsyncMock(return_value=TEST_BASE_URL)
    source.get_region = AsyncMock(return_value=None)
    return source


@pytest.fixture
def chat_loop(
    test_config: QueryDeskConfig,
    store: CredentialStore,
    fake_gateway: FakeGateway,
    scripted_model: ScriptedModel,
    connections: MagicMock,
) -> OrchestrationLoop:
    return OrchestrationLoop(
        test_config,
        store,
        connections,
        gateway_factory=fake_gateway.factory,
        model_factory=scripted_model.factory,
        launcher_probe=AsyncMock(return_value="10.0.0"),
    )


@pytest.fixture
def client(
    test_config: QueryDeskConfig,
    store: CredentialStore,
    chat_loop: OrchestrationLoop,
) -> Generator[TestClient, None, None]:
    """TestClient with config, store and loop overridden."""
    app.dependency_overrides[get_settings] = lambda: test_config
    app.dependency_overrides[get_credential_store] = lambda: store
    app.dependency_overrides[get_orchestration_loop] = lambda: chat_loop

    yield TestClient(app)

    app.dependency_overrides.clear()
    reset_dependencies()


@pytest.fixture
def chat_body() -> dict:
    return {
        "messages": [{"role": "user", "content": "How many users do we have?"}],
        "apiKey": TEST_API_KEY,
        "projectRef": TEST_REF,
    }


@pytest.fixture
def signed_in_client(client: TestClient, test_config: QueryDeskConfig) -> TestClient:
    """Client carrying the session access token cookie."""
    client.cookies.set(test_config.server.session_cookie, TEST_ACCESS_TOKEN)
    return client
