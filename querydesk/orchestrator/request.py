"""Chat request schema and validation."""

from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from querydesk.errors import NoUserMessageError, ValidationError


class ChatMessage(BaseModel):
    """One conversation message as sent by the client."""

    role: Literal["user", "assistant", "system", "data"]
    content: str
    id: str | None = None
    name: str | None = None


class ChatRequest(BaseModel):
    """Body of POST /api/v1/chat."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage]
    api_key: str = Field(alias="apiKey")
    project_ref: str = Field(alias="projectRef")

    @field_validator("messages")
    @classmethod
    def messages_not_empty(cls, value: list[ChatMessage]) -> list[ChatMessage]:
        if not value:
            raise ValueError("At least one message is required")
        return value

    @field_validator("api_key")
    @classmethod
    def api_key_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("API key is required")
        return value

    @field_validator("project_ref")
    @classmethod
    def project_ref_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("Project reference is required")
        return value

    def active_query(self) -> str:
        """Content of the most recent user message.

        Raises:
            NoUserMessageError: No message has role 'user'.
        """
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        raise NoUserMessageError()


def _describe(error: dict[str, Any]) -> str:
    if error.get("type") == "value_error":
        return str(error["ctx"]["error"])
    location = ".".join(str(part) for part in error.get("loc", ()))
    if error.get("type") == "missing":
        return f"{location} is required"
    return f"{location}: {error.get('msg', 'invalid value')}" if location else error.get("msg", "")


def parse_chat_request(payload: Any) -> ChatRequest:
    """Validate a raw JSON body.

    Raises:
        ValidationError: With all problems joined by ", ".
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return ChatRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(", ".join(_describe(err) for err in e.errors())) from e
