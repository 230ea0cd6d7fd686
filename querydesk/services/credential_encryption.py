"""Reversible protection for database passwords kept in the credential store.

Passwords are sealed with AES-256-GCM under a key derived (HKDF-SHA256)
from ``credentials.app_secret``. That secret has a built-in default, so a
blob only keeps the password out of plain sight in the store file. It is
not a defence against someone who has the code.

A blob is a urlsafe-base64 JSON envelope::

    {"v": 1, "alg": "AES-256-GCM", "nonce": <b64>, "ct": <b64>}

"" always maps to "" in both directions.
"""

import base64
import binascii
import json
import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

ENVELOPE_VERSION = 1
ALGORITHM = "AES-256-GCM"
KEY_BYTES = 32
NONCE_BYTES = 12

_HKDF_SALT = b"querydesk.credential-store"
_HKDF_INFO = b"password-blob-v1"


class CredentialDecryptionError(Exception):
    """A blob could not be opened (bad key, tampering or bad format)."""


def derive_key(app_secret: str) -> bytes:
    """Turn the application secret into a 32-byte AES key.

    Raises:
        ValueError: app_secret is empty.
    """
    if not app_secret:
        raise ValueError("Application secret must not be empty")
    return HKDF(
        algorithm=hashes.SHA256(), length=KEY_BYTES, salt=_HKDF_SALT, info=_HKDF_INFO,
    ).derive(app_secret.encode("utf-8"))


def _key_length_problem(key: bytes) -> str | None:
    if len(key) == KEY_BYTES:
        return None
    return f"Key must be exactly {KEY_BYTES} bytes for {ALGORITHM}, got {len(key)}"


def _aad(aad: str) -> bytes | None:
    return aad.encode("utf-8") if aad else None


def encrypt(plaintext: str, key: bytes, aad: str = "") -> str:
    """Seal plaintext into a blob.

    Args:
        plaintext: Value to protect.
        key: Output of derive_key().
        aad: Context the blob is bound to, e.g. ``password:<instance_ref>``.
            decrypt() must be given the same value.

    Raises:
        ValueError: The key has the wrong length.
    """
    problem = _key_length_problem(key)
    if problem:
        raise ValueError(problem)
    if plaintext == "":
        return ""

    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), _aad(aad))
    envelope = json.dumps({
        "v": ENVELOPE_VERSION,
        "alg": ALGORITHM,
        "nonce": base64.b64encode(nonce).decode("ascii"),
        "ct": base64.b64encode(sealed).decode("ascii"),
    })
    return base64.urlsafe_b64encode(envelope.encode("utf-8")).decode("ascii")


def _unpack(blob: str) -> tuple[bytes, bytes]:
    """Return (nonce, ciphertext) from a blob, validating the envelope."""
    try:
        envelope = json.loads(base64.urlsafe_b64decode(blob.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError) as e:
        raise CredentialDecryptionError(f"Invalid envelope: {e}") from e
    if not isinstance(envelope, dict):
        raise CredentialDecryptionError("Invalid envelope: expected a JSON object")

    if envelope.get("v") != ENVELOPE_VERSION:
        raise CredentialDecryptionError(f"Unsupported envelope version {envelope.get('v')!r}")
    if envelope.get("alg") != ALGORITHM:
        raise CredentialDecryptionError(f"Unsupported algorithm {envelope.get('alg')!r}")

    try:
        nonce = base64.b64decode(envelope["nonce"], validate=True)
        sealed = base64.b64decode(envelope["ct"], validate=True)
    except (KeyError, TypeError, binascii.Error) as e:
        raise CredentialDecryptionError(f"Invalid envelope fields: {e}") from e
    if len(nonce) != NONCE_BYTES:
        raise CredentialDecryptionError(f"Nonce must be {NONCE_BYTES} bytes, got {len(nonce)}")
    return nonce, sealed


def decrypt(blob: str, key: bytes, aad: str = "") -> str:
    """Open a blob made by encrypt().

    Raises:
        CredentialDecryptionError: Wrong key or aad, tampered or malformed blob.
    """
    problem = _key_length_problem(key)
    if problem:
        raise CredentialDecryptionError(problem)
    if blob == "":
        return ""

    nonce, sealed = _unpack(blob)
    try:
        return AESGCM(key).decrypt(nonce, sealed, _aad(aad)).decode("utf-8")
    except Exception as e:
        raise CredentialDecryptionError(f"Decryption failed: {e!r}") from e
