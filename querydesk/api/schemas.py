"""Pydantic schemas for the credential and health endpoints.

The chat request body lives in querydesk.orchestrator.request because the
loop validates it itself.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

API_KEY_PREFIX = "sk-ant-"


class SetApiKeyRequest(BaseModel):
    """Request body for storing the LLM API key."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey", min_length=1)

    @field_validator("api_key")
    @classmethod
    def check_prefix(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(API_KEY_PREFIX):
            raise ValueError(f"The API key must start with '{API_KEY_PREFIX}'")
        return value


class SetPasswordRequest(BaseModel):
    """Request body for storing a project's database password."""

    password: str = Field(..., min_length=1)


class ApiKeyStatusResponse(BaseModel):
    has_api_key: bool = Field(..., serialization_alias="hasApiKey")


class PasswordStatusResponse(BaseModel):
    project_ref: str = Field(..., serialization_alias="projectRef")
    has_password: bool = Field(..., serialization_alias="hasPassword")


class CredentialStatusResponse(BaseModel):
    """Which credentials are present. Never includes secret values."""

    has_api_key: bool = Field(..., serialization_alias="hasApiKey")
    project_refs: list[str] = Field(default_factory=list, serialization_alias="projectRefs")
    backend: str


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: int
    credential_backend: str
    launcher: str
