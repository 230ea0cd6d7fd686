"""Keeps the credential snapshot in the operating system's keychain.

The `keyring` library picks the platform backend (macOS Keychain, Windows
Credential Manager, Secret Service on Linux). QueryDesk writes a single
JSON entry holding the API key and the already-encrypted password blobs.
"""

import json
import logging

import keyring
import keyring.errors

from querydesk.services.credential_store import CredentialState

logger = logging.getLogger(__name__)

SERVICE_NAME = "com.querydesk.app"
STATE_ENTRY = "credential_state"


class KeyringStore:
    """Named string entries under one keyring service."""

    def __init__(self, service_name: str = SERVICE_NAME) -> None:
        self._service = service_name

    def get(self, entry: str) -> str | None:
        """Read an entry. An unusable backend reads as missing."""
        try:
            return keyring.get_password(self._service, entry)
        except Exception:
            logger.warning("Could not read keyring entry %s", entry, exc_info=True)
            return None

    def set(self, entry: str, value: str) -> None:
        keyring.set_password(self._service, entry, value)

    def delete(self, entry: str) -> None:
        try:
            keyring.delete_password(self._service, entry)
        except keyring.errors.PasswordDeleteError:
            return
        logger.info("Removed keyring entry %s", entry)

    def has(self, entry: str) -> bool:
        return self.get(entry) is not None


class KeyringPersistence:
    """Loads and saves CredentialState as the STATE_ENTRY keyring entry."""

    def __init__(self, store: KeyringStore | None = None) -> None:
        self._store = store or KeyringStore()

    def load(self) -> CredentialState | None:
        raw = self._store.get(STATE_ENTRY)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable credential state in keyring")
            return None
        return CredentialState.from_dict(data) if isinstance(data, dict) else None

    def save(self, state: CredentialState) -> None:
        # An empty snapshot removes the entry instead of storing "{}".
        if state.api_key is None and not state.passwords_by_instance:
            self._store.delete(STATE_ENTRY)
        else:
            self._store.set(STATE_ENTRY, json.dumps(state.to_dict()))
