"""Process-wide collaborators for the API, injectable via FastAPI Depends.

Tests replace them with ``app.dependency_overrides`` or reset them with
``reset_dependencies()``.
"""

import logging

from querydesk.config import QueryDeskConfig, get_config
from querydesk.orchestrator.loop import OrchestrationLoop
from querydesk.services.credential_store import CredentialStore, create_credential_store
from querydesk.services.management_client import ManagementClient

logger = logging.getLogger(__name__)

_credential_store: CredentialStore | None = None
_management_client: ManagementClient | None = None
_orchestration_loop: OrchestrationLoop | None = None


def get_settings() -> QueryDeskConfig:
    return get_config()


def get_credential_store() -> CredentialStore:
    global _credential_store
    if _credential_store is None:
        config = get_config()
        _credential_store = create_credential_store(config.credentials)
        logger.info("Credential store ready (backend=%s)", config.credentials.backend)
    return _credential_store


def get_management_client() -> ManagementClient:
    global _management_client
    if _management_client is None:
        _management_client = ManagementClient(get_config().management)
    return _management_client


def get_orchestration_loop() -> OrchestrationLoop:
    global _orchestration_loop
    if _orchestration_loop is None:
        _orchestration_loop = OrchestrationLoop(
            get_config(), get_credential_store(), get_management_client(),
        )
    return _orchestration_loop


def reset_dependencies() -> None:
    """Drop cached collaborators so the next request rebuilds them."""
    global _credential_store, _management_client, _orchestration_loop
    _credential_store = None
    _management_client = None
    _orchestration_loop = None
