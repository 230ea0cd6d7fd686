"""FastAPI routes for managing stored credentials.

Passwords can be set, checked and removed but are never returned.
"""

import logging

from fastapi import APIRouter, Depends

from querydesk.api.dependencies import get_credential_store, get_settings
from querydesk.api.schemas import (
    ApiKeyStatusResponse,
    CredentialStatusResponse,
    PasswordStatusResponse,
    SetApiKeyRequest,
    SetPasswordRequest,
)
from querydesk.config import QueryDeskConfig
from querydesk.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credentials", tags=["credentials"])


def _status(store: CredentialStore, settings: QueryDeskConfig) -> CredentialStatusResponse:
    return CredentialStatusResponse(
        has_api_key=store.has_api_key(),
        project_refs=store.instance_refs(),
        backend=settings.credentials.backend,
    )


@router.get("", response_model=CredentialStatusResponse)
def get_credential_status(
    store: CredentialStore = Depends(get_credential_store),
    settings: QueryDeskConfig = Depends(get_settings),
) -> CredentialStatusResponse:
    """Report which credentials are stored."""
    return _status(store, settings)


@router.put("/api-key", response_model=ApiKeyStatusResponse)
def set_api_key(
    body: SetApiKeyRequest,
    store: CredentialStore = Depends(get_credential_store),
) -> ApiKeyStatusResponse:
    """Store the LLM provider API key."""
    store.set_api_key(body.api_key)
    return ApiKeyStatusResponse(has_api_key=True)


@router.get("/projects/{project_ref}/password", response_model=PasswordStatusResponse)
def has_password(
    project_ref: str,
    store: CredentialStore = Depends(get_credential_store),
) -> PasswordStatusResponse:
    """Check whether a database password is stored for a project."""
    return PasswordStatusResponse(
        project_ref=project_ref, has_password=store.has_password(project_ref),
    )


@router.put("/projects/{project_ref}/password", response_model=PasswordStatusResponse)
def set_password(
    project_ref: str,
    body: SetPasswordRequest,
    store: CredentialStore = Depends(get_credential_store),
) -> PasswordStatusResponse:
    """Encrypt and store a project's database password."""
    store.set_password(project_ref, body.password)
    return PasswordStatusResponse(
        project_ref=project_ref, has_password=store.has_password(project_ref),
    )


@router.delete("/projects/{project_ref}/password", response_model=PasswordStatusResponse)
def delete_password(
    project_ref: str,
    store: CredentialStore = Depends(get_credential_store),
) -> PasswordStatusResponse:
    """Forget a project's database password."""
    store.delete_password(project_ref)
    return PasswordStatusResponse(project_ref=project_ref, has_password=False)


@router.post("/reset", response_model=CredentialStatusResponse)
def reset_credentials(
    store: CredentialStore = Depends(get_credential_store),
    settings: QueryDeskConfig = Depends(get_settings),
) -> CredentialStatusResponse:
    """Clear the API key and every stored password."""
    store.reset()
    logger.info("Credentials reset via API")
    return _status(store, settings)
