"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- Configuration with an in-memory credential backend
- Credential store keyed from a test secret
- Fake gateway and scripted model doubles
"""

from collections.abc import Generator

import pytest

from querydesk.config import CredentialsConfig, QueryDeskConfig, reset_config
from querydesk.services.credential_encryption import derive_key
from querydesk.services.credential_store import CredentialStore
from tests.helpers import FakeGateway
from tests.helpers.constants import TEST_PASSWORD, TEST_REF, TEST_SECRET


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring external services"
    )


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path) -> Generator[None, None, None]:
    """Keep tests away from user config files and QUERYDESK_* overrides."""
    import os

    for key in list(os.environ):
        if key.startswith("QUERYDESK_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    reset_config()
    yield
    reset_config()


@pytest.fixture
def test_config() -> QueryDeskConfig:
    """Config using the in-memory credential backend."""
    return QueryDeskConfig(credentials=CredentialsConfig(backend="memory", app_secret=TEST_SECRET))


@pytest.fixture
def key() -> bytes:
    return derive_key(TEST_SECRET)


@pytest.fixture
def store(key: bytes) -> CredentialStore:
    """Empty in-memory credential store."""
    return CredentialStore(key)


@pytest.fixture
def store_with_password(store: CredentialStore) -> CredentialStore:
    """Store holding TEST_PASSWORD for TEST_REF."""
    store.set_password(TEST_REF, TEST_PASSWORD)
    return store


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()
