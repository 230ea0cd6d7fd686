"""Credential store for the LLM API key and per-project database passwords.

Passwords are held only as encrypted blobs (see credential_encryption) and
decrypted at the point of use. The store is the only state shared across
concurrent chat requests: each instance ref has its own lock so a reader
never observes a half-written blob, and no lock spans different refs.

Durable storage is delegated to a CredentialPersistence collaborator which
is called after every mutation:
    - MemoryPersistence: nothing survives the process (tests, ephemeral use)
    - JsonFilePersistence: JSON file in the platform data dir
    - KeyringPersistence: system keychain (see keyring_store)

Example:
    store = CredentialStore(derive_key(secret), JsonFilePersistence(path))
    store.set_password("abcxyz", "hunter2")
    store.get_password("abcxyz")  # "hunter2"
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from querydesk.config import CredentialsConfig
from querydesk.services.credential_encryption import (
    CredentialDecryptionError,
    decrypt,
    derive_key,
    encrypt,
)

logger = logging.getLogger(__name__)


@dataclass
class CredentialState:
    """Serializable snapshot of the store.

    Attributes:
        api_key: LLM provider key, or None when not entered yet.
        passwords_by_instance: instance ref -> encrypted password blob.
    """

    api_key: str | None = None
    passwords_by_instance: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "api_key": self.api_key,
            "passwords_by_instance": dict(self.passwords_by_instance),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CredentialState":
        passwords = data.get("passwords_by_instance") or {}
        return cls(
            api_key=data.get("api_key") or None,
            passwords_by_instance={str(k): str(v) for k, v in passwords.items()},
        )


class CredentialPersistence(Protocol):
    """Durable storage for CredentialState snapshots."""

    def load(self) -> CredentialState | None:
        ...

    def save(self, state: CredentialState) -> None:
        ...


class MemoryPersistence:
    """Persistence that keeps nothing beyond the process lifetime."""

    def load(self) -> CredentialState | None:
        return None

    def save(self, state: CredentialState) -> None:
        return None


class JsonFilePersistence:
    """Persist the credential snapshot as a JSON file with 0600 permissions.

    Writes go to a temp file in the same directory followed by os.replace,
    so a crash mid-write never leaves a truncated file behind.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> CredentialState | None:
        if not self._path.exists():
            return None
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Credential file %s unreadable, starting empty: %s", self._path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Credential file %s has unexpected shape, starting empty", self._path)
            return None
        return CredentialState.from_dict(data)

    def save(self, state: CredentialState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".credentials-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class CredentialStore:
    """API key and encrypted per-instance passwords.

    Mutations are visible to the next read immediately; persistence runs
    synchronously after the in-memory update.
    """

    def __init__(
        self,
        key: bytes,
        persistence: CredentialPersistence | None = None,
    ) -> None:
        """Initialize the store and load any persisted state.

        Args:
            key: 32-byte key from derive_key().
            persistence: Durable storage collaborator. Defaults to memory only.
        """
        self._key = key
        self._persistence: CredentialPersistence = persistence or MemoryPersistence()
        self._api_key: str | None = None
        self._blobs: dict[str, str] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._persist_lock = threading.Lock()

        state = self._persistence.load()
        if state is not None:
            self._api_key = state.api_key
            self._blobs = dict(state.passwords_by_instance)
            logger.info(
                "Loaded credential state: api_key=%s instances=%d",
                bool(self._api_key), len(self._blobs),
            )

    def _lock_for(self, instance_ref: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(instance_ref)
            if lock is None:
                lock = threading.Lock()
                self._locks[instance_ref] = lock
            return lock

    def _persist(self) -> None:
        with self._persist_lock:
            with self._locks_guard:
                snapshot = CredentialState(
                    api_key=self._api_key,
                    passwords_by_instance=dict(self._blobs),
                )
            self._persistence.save(snapshot)

    @staticmethod
    def _aad(instance_ref: str) -> str:
        return f"password:{instance_ref}"

    # -- API key -------------------------------------------------------------

    def set_api_key(self, key: str) -> None:
        """Store the LLM provider API key.

        Format checks (e.g. the 'sk-ant-' prefix) are the caller's concern.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("API key must not be empty")
        with self._locks_guard:
            self._api_key = key
        self._persist()
        logger.info("Stored LLM API key")

    def get_api_key(self) -> str | None:
        return self._api_key

    def has_api_key(self) -> bool:
        return self._api_key is not None

    # -- Passwords -----------------------------------------------------------

    def set_password(self, instance_ref: str, password: str) -> None:
        """Encrypt and store the database password for an instance.

        An empty instance_ref is a caller error: it is logged and ignored.
        """
        if not instance_ref:
            logger.error("set_password called without an instance reference; ignoring")
            return
        blob = encrypt(password, self._key, aad=self._aad(instance_ref))
        with self._lock_for(instance_ref):
            self._blobs[instance_ref] = blob
        self._persist()
        logger.info("Stored database password for instance %s", instance_ref)

    def get_password(self, instance_ref: str) -> str | None:
        """Return the decrypted password, or None when absent or unreadable."""
        if not instance_ref:
            return None
        with self._lock_for(instance_ref):
            blob = self._blobs.get(instance_ref)
        if blob is None:
            return None
        try:
            return decrypt(blob, self._key, aad=self._aad(instance_ref))
        except CredentialDecryptionError as e:
            logger.warning("Stored password for instance %s is unreadable: %s", instance_ref, e)
            return None

    def has_password(self, instance_ref: str) -> bool:
        if not instance_ref:
            return False
        with self._lock_for(instance_ref):
            return instance_ref in self._blobs

    def delete_password(self, instance_ref: str) -> bool:
        """Forget the password for one instance. Returns True if one existed."""
        with self._lock_for(instance_ref):
            existed = self._blobs.pop(instance_ref, None) is not None
        if existed:
            self._persist()
            logger.info("Deleted database password for instance %s", instance_ref)
        return existed

    def instance_refs(self) -> list[str]:
        with self._locks_guard:
            return sorted(self._blobs)

    def reset(self) -> None:
        """Clear the API key and all passwords (explicit user reset only)."""
        with self._locks_guard:
            self._api_key = None
            self._blobs.clear()
        self._persist()
        logger.info("Credential store reset")


def create_credential_store(config: CredentialsConfig) -> CredentialStore:
    """Build a CredentialStore from configuration.

    Args:
        config: Credentials section of QueryDeskConfig.

    Returns:
        Store wired to the configured persistence backend.
    """
    from querydesk.config import DEFAULT_APP_SECRET

    if config.app_secret == DEFAULT_APP_SECRET:
        logger.warning(
            "Credential store is using the built-in application secret. "
            "Set QUERYDESK_CREDENTIALS_APP_SECRET to use your own."
        )

    persistence: CredentialPersistence
    if config.backend == "memory":
        persistence = MemoryPersistence()
    elif config.backend == "keyring":
        from querydesk.services.keyring_store import KeyringPersistence

        persistence = KeyringPersistence()
    else:
        from querydesk.utils.paths import get_default_credentials_path

        persistence = JsonFilePersistence(config.file_path or get_default_credentials_path())

    return CredentialStore(derive_key(config.app_secret), persistence)
