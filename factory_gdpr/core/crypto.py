from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import os
import secrets
import threading
from typing import Dict, Optional, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from factory_gdpr.core.errors import DecryptionError, KeyUnavailableError


KEY_BYTES = 32
BLOB_VERSION = 1


def key_id_from_key_bytes(key: bytes) -> str:
    h = hashlib.sha256(key).hexdigest()
    return h[:16]


def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii")


def _b64d(s: str) -> bytes:
    return base64.urlsafe_b64decode(s.encode("ascii"))


def generate_data_key() -> bytes:
    # AES-256 key
    return secrets.token_bytes(KEY_BYTES)


def write_key_file(path: str, key_bytes: bytes) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(key_bytes)


def read_key_file(path: str) -> bytes:
    if not os.path.exists(path):
        raise KeyUnavailableError(f"Data key not found at {path!r}", path=path)
    with open(path, "rb") as f:
        b = f.read()
    if len(b) != KEY_BYTES:
        raise ValueError("Data key must be 32 bytes (AES-256).")
    return b


def best_effort_restrict_permissions(path: str) -> None:
    """
    Best-effort permissions tightening.
    On Windows this is limited; on POSIX it sets 0o600.
    """
    try:
        if os.name != "nt":
            os.chmod(path, 0o600)
    except OSError:
        return


def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: bytes = b"") -> Dict[str, object]:
    aes = AESGCM(key)
    nonce = secrets.token_bytes(12)
    ct = aes.encrypt(nonce, plaintext, aad or None)
    return {"v": BLOB_VERSION, "nonce": _b64e(nonce), "ciphertext": _b64e(ct)}


def aesgcm_decrypt(key: bytes, blob: Dict[str, object], aad: bytes = b"") -> bytes:
    if blob.get("v") != BLOB_VERSION:
        raise ValueError("Unsupported encrypted blob version.")
    aes = AESGCM(key)
    nonce = _b64d(str(blob["nonce"]))
    ct = _b64d(str(blob["ciphertext"]))
    return aes.decrypt(nonce, ct, aad or None)


class KeyProvider(Protocol):
    """
    Key-access boundary. Key material lives outside the engine.
    """

    def get_key(self) -> bytes: ...


class EphemeralKeyProvider:
    """
    One random key for the lifetime of the process.

    Data encrypted under this key cannot be read after a restart; use
    FileKeyProvider (or a KMS-backed provider) for anything durable.
    """

    def __init__(self, key: Optional[bytes] = None):
        if key is not None and len(key) != KEY_BYTES:
            raise ValueError("Data key must be 32 bytes (AES-256).")
        self._key = key or generate_data_key()

    def get_key(self) -> bytes:
        return self._key


class FileKeyProvider:
    """
    Persisted 32-byte key file. Read once and cached.
    """

    def __init__(self, *, path: str, create_if_missing: bool = False):
        self.path = str(path)
        self.create_if_missing = bool(create_if_missing)
        self._key: Optional[bytes] = None
        self._lock = threading.Lock()

    def get_key(self) -> bytes:
        with self._lock:
            if self._key is None:
                if not os.path.exists(self.path) and self.create_if_missing:
                    write_key_file(self.path, generate_data_key())
                    best_effort_restrict_permissions(self.path)
                self._key = read_key_file(self.path)
            return self._key


class CryptoBox:
    """
    Field-level encryption for stored personal data plus the keyed hash used
    by pseudonymization rules.

    Ciphertext tokens are compact JSON AES-GCM blobs; every call uses a fresh
    nonce so equal plaintexts never produce equal tokens.
    """

    aad: bytes = b"factory_gdpr.personal_data.v1"

    def __init__(self, key_provider: KeyProvider):
        self.key_provider = key_provider
        key = self.key_provider.get_key()
        if len(key) != KEY_BYTES:
            raise ValueError("Data key must be 32 bytes (AES-256).")
        # separate subkey so hash outputs never reuse the encryption key directly
        self._hash_key = hmac.new(key, b"factory_gdpr.keyed_hash", hashlib.sha256).digest()

    @property
    def key_id(self) -> str:
        return key_id_from_key_bytes(self.key_provider.get_key())

    def encrypt(self, plaintext: str) -> str:
        blob = aesgcm_encrypt(self.key_provider.get_key(), str(plaintext).encode("utf-8"), aad=self.aad)
        return json.dumps(blob, separators=(",", ":"), sort_keys=True)

    def decrypt(self, token: str) -> str:
        try:
            blob = json.loads(token)
        except (TypeError, ValueError) as e:
            raise DecryptionError("Ciphertext is malformed.") from e
        if not isinstance(blob, dict):
            raise DecryptionError("Ciphertext is malformed.")
        try:
            pt = aesgcm_decrypt(self.key_provider.get_key(), blob, aad=self.aad)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext was not produced under the current key.") from e
        except (KeyError, ValueError, binascii.Error) as e:
            raise DecryptionError("Ciphertext is malformed.") from e
        return pt.decode("utf-8")

    def keyed_hash(self, value: str) -> str:
        return hmac.new(self._hash_key, str(value).encode("utf-8"), hashlib.sha256).hexdigest()
