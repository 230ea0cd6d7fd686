"""Configuration for the API server, CLI and orchestration loop.

Sources, later ones winning:

1. Built-in defaults below.
2. A YAML file: ``--config``/QUERYDESK_CONFIG_PATH, else ./querydesk.yaml,
   else ~/.querydesk/config.yaml. ``${VAR}`` inside values is replaced from
   the environment.
3. QUERYDESK_<SECTION>_<KEY> environment variables, e.g.
   QUERYDESK_AGENT_MAX_STEPS=3. Values are passed as strings and coerced
   by the pydantic models.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "QUERYDESK_"

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")

# Fixed application secret used to key the credential transform when no
# override is configured. Anyone with the source can reverse the blobs.
DEFAULT_APP_SECRET = "querydesk-secure-storage-key"


def resolve_env_vars(value: str) -> str:
    """Substitute ${VAR} references; unset variables become ""."""
    return _ENV_REFERENCE.sub(lambda m: os.environ.get(m.group(1), ""), value)


def _resolve_tree(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _resolve_tree(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_resolve_tree(item) for item in node]
    return resolve_env_vars(node) if isinstance(node, str) else node


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"
    allowed_origins: list[str] = []
    # Cookie holding the Supabase access token set by the login flow
    session_cookie: str = "supabase_access_token"

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, value: Any) -> Any:
        """Accept a comma-separated string (env override) as well as a list."""
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


class AgentConfig(BaseModel):
    """LLM settings for the orchestration loop."""

    model: str = os.environ.get("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
    max_steps: int = 5
    max_tokens: int = 4000
    temperature: float = 0.2


class GatewayConfig(BaseModel):
    """Settings for the MCP tool server subprocess."""

    command: str = "npx"
    package: str = "@modelcontextprotocol/server-postgres"
    handshake_timeout: float = 60.0
    # Reject non-SELECT statements at the gateway instead of trusting the prompt
    read_only_guard: bool = False


class PoolerConfig(BaseModel):
    """Pooled-endpoint rewriting settings."""

    region_host: str = "aws-0-us-east-2"
    domain: str = "pooler.supabase.com"


class CredentialsConfig(BaseModel):
    """Credential store settings."""

    backend: Literal["memory", "file", "keyring"] = "file"
    app_secret: str = DEFAULT_APP_SECRET
    file_path: str | None = None


class ManagementConfig(BaseModel):
    """Supabase Management API settings."""

    base_url: str = "https://api.supabase.com/v1"
    timeout: float = 15.0


class QueryDeskConfig(BaseModel):
    """Top-level configuration."""

    server: ServerConfig = ServerConfig()
    agent: AgentConfig = AgentConfig()
    gateway: GatewayConfig = GatewayConfig()
    pooler: PoolerConfig = PoolerConfig()
    credentials: CredentialsConfig = CredentialsConfig()
    management: ManagementConfig = ManagementConfig()


_SEARCH_PATHS = (
    Path("querydesk.yaml"),
    Path("querydesk.yml"),
    Path("~/.querydesk/config.yaml"),
    Path("~/.querydesk/config.yml"),
)


def _find_config_file() -> Path | None:
    for candidate in _SEARCH_PATHS:
        path = candidate.expanduser().absolute()
        if path.exists():
            return path
    return None


def _env_overrides(environ: dict[str, str]) -> dict[str, dict[str, str]]:
    """Collect QUERYDESK_<SECTION>_<KEY> variables by section."""
    sections = QueryDeskConfig.model_fields.keys()
    overrides: dict[str, dict[str, str]] = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        section, _, key = name[len(ENV_PREFIX):].lower().partition("_")
        if section in sections and key:
            overrides.setdefault(section, {})[key] = value
    return overrides


def load_config(config_path: str | None = None) -> QueryDeskConfig:
    """Build the configuration from defaults, YAML and the environment.

    Args:
        config_path: Explicit YAML file. Falls back to QUERYDESK_CONFIG_PATH,
            then the search paths.

    Returns:
        Validated QueryDeskConfig.

    Raises:
        FileNotFoundError: An explicitly named file does not exist.
    """
    explicit = config_path or os.environ.get("QUERYDESK_CONFIG_PATH")
    if explicit:
        path: Path | None = Path(explicit)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {explicit}")
    else:
        path = _find_config_file()

    data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        data = _resolve_tree(yaml.safe_load(path.read_text()) or {})

    for section, values in _env_overrides(dict(os.environ)).items():
        data[section] = {**(data.get(section) or {}), **values}
    return QueryDeskConfig(**data)


_config: QueryDeskConfig | None = None


def get_config() -> QueryDeskConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config(config: QueryDeskConfig | None = None) -> None:
    """Replace (or clear) the cached config. Used by tests and the CLI."""
    global _config
    _config = config
