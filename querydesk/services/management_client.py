"""Supabase Management API client.

Looks up the templated connection string and region of a project using the
caller's OAuth access token. Responses are cached per (token, path) for a
few minutes since chat requests for the same project arrive in bursts.
"""

import hashlib
import logging
import time
from typing import Any

import httpx

from querydesk.config import ManagementConfig
from querydesk.errors import ManagementAPIError, NotAuthenticatedError

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300.0


class ManagementClient:
    """Async client for the subset of the Management API the chat flow needs."""

    def __init__(
        self,
        config: ManagementConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        cache_ttl: float = CACHE_TTL_SECONDS,
    ) -> None:
        """Initialize the client.

        Args:
            config: Base URL and timeout. Defaults to ManagementConfig().
            transport: Optional httpx transport (tests use httpx.MockTransport).
            cache_ttl: Seconds a cached response stays valid.
        """
        self._config = config or ManagementConfig()
        self._transport = transport
        self._cache_ttl = cache_ttl
        self._cache: dict[tuple[str, str], tuple[float, Any]] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def _store(self, cache_key: tuple[str, str], data: Any, now: float) -> None:
        # Drop expired entries for every token before adding this one.
        self._cache = {
            key: entry for key, entry in self._cache.items()
            if now - entry[0] < self._cache_ttl
        }
        self._cache[cache_key] = (now, data)

    @staticmethod
    def _token_key(access_token: str) -> str:
        return hashlib.sha256(access_token.encode("utf-8")).hexdigest()[:16]

    async def _get(self, path: str, access_token: str) -> Any:
        if not access_token:
            raise NotAuthenticatedError()

        cache_key = (self._token_key(access_token), path)
        cached = self._cache.get(cache_key)
        now = time.monotonic()
        if cached is not None and now - cached[0] < self._cache_ttl:
            return cached[1]

        async with httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.get(
                    path, headers={"Authorization": f"Bearer {access_token}"},
                )
            except httpx.HTTPError as e:
                logger.error("Management API request %s failed: %s", path, e)
                raise ManagementAPIError(f"Management API request failed: {e}") from e

        if resp.status_code == 401:
            raise NotAuthenticatedError()
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("message", resp.text)
            except Exception:
                detail = resp.text
            logger.error("Management API %s returned %d: %s", path, resp.status_code, detail)
            raise ManagementAPIError(
                f"Management API returned {resp.status_code}: {detail}",
                status=resp.status_code,
            )

        data = resp.json()
        self._store(cache_key, data, now)
        return data

    async def get_project(self, project_ref: str, access_token: str) -> dict[str, Any]:
        """Fetch project metadata (region, database host, status)."""
        return await self._get(f"/projects/{project_ref}", access_token)

    async def get_connection_string(self, project_ref: str, access_token: str) -> str:
        """Fetch the templated connection string for a project.

        Falls back to a template built from the project's database host when
        the connection-string endpoint has nothing for the project.

        Raises:
            ManagementAPIError: Neither endpoint yields a usable address.
            NotAuthenticatedError: The access token is missing or rejected.
        """
        try:
            data = await self._get(f"/projects/{project_ref}/connection-string", access_token)
            db_url = data.get("db_url") if isinstance(data, dict) else None
            if db_url:
                return db_url
        except ManagementAPIError as e:
            if e.status != 404:
                raise
        logger.info("No connection string for %s, building from project host", project_ref)

        project = await self.get_project(project_ref, access_token)
        host = (project.get("database") or {}).get("host")
        if not host:
            raise ManagementAPIError("Database connection information not available")
        return f"postgresql://postgres:[YOUR-PASSWORD]@{host}:5432/postgres"

    async def get_region(self, project_ref: str, access_token: str) -> str | None:
        """Project region (e.g. 'us-east-2'), or None when unknown."""
        try:
            project = await self.get_project(project_ref, access_token)
        except ManagementAPIError as e:
            logger.warning("Could not look up region for %s: %s", project_ref, e)
            return None
        region = project.get("region")
        return region if isinstance(region, str) and region else None
