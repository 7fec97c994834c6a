"""
Authenticated encryption for token storage.

Tokens are sealed with AES-256-GCM. Each ciphertext blob is
``nonce (12 bytes) || ciphertext || tag (16 bytes)`` and the key version is
bound in as associated data, so a blob only opens under the version it was
written with. Keys live in a versioned ``EncryptionKeySet``: the highest
version encrypts, every loaded version decrypts.
"""

import base64
import binascii
import os
import threading
from typing import Dict, List, Mapping, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import DecryptionError, ErrorCode, ServiceError, ValidationError, validation_failed

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


class EncryptionKeySet:
    """Thread-safe, versioned set of 256-bit data keys."""

    def __init__(self, keys: Optional[Mapping[int, bytes]] = None):
        self._keys: Dict[int, bytes] = {}
        self._lock = threading.RLock()
        for version, key in (keys or {}).items():
            self._install(int(version), key)

    def _install(self, version: int, key: bytes) -> None:
        if version < 1:
            raise validation_failed("key_version", "key versions start at 1", key_version=version)
        if len(key) != KEY_BYTES:
            raise validation_failed(
                "key", f"keys must be {KEY_BYTES} bytes", key_version=version
            )
        self._keys[version] = bytes(key)

    @staticmethod
    def generate_key() -> bytes:
        return AESGCM.generate_key(bit_length=KEY_BYTES * 8)

    @classmethod
    def from_encoded(cls, value: str) -> "EncryptionKeySet":
        """
        Parse ``"1:<base64>,2:<base64>"`` into a key set.

        Raises:
            ValidationError: If an entry is malformed or a key has the wrong length
        """
        keys: Dict[int, bytes] = {}
        for entry in filter(None, (part.strip() for part in value.split(","))):
            version, sep, encoded = entry.partition(":")
            if not sep:
                raise validation_failed("encryption_keys", "entries must be version:base64")
            try:
                keys[int(version)] = base64.b64decode(encoded, validate=True)
            except (ValueError, binascii.Error) as e:
                raise validation_failed(
                    "encryption_keys", "entry is not version:base64", cause=e
                ) from e
        return cls(keys)

    def to_encoded(self) -> str:
        with self._lock:
            return ",".join(
                f"{version}:{base64.b64encode(key).decode('ascii')}"
                for version, key in sorted(self._keys.items())
            )

    @property
    def current_version(self) -> int:
        with self._lock:
            if not self._keys:
                raise ServiceError(
                    "No encryption keys loaded",
                    error_code=ErrorCode.CONFIGURATION_ERROR,
                    operation="current_version",
                )
            return max(self._keys)

    def versions(self) -> List[int]:
        with self._lock:
            return sorted(self._keys)

    def get(self, version: int) -> Optional[bytes]:
        with self._lock:
            return self._keys.get(version)

    def add_key(self, key: Optional[bytes] = None) -> int:
        """
        Rotate: install ``key`` (or a fresh random key) as the new current version.

        Returns:
            The new key version
        """
        with self._lock:
            version = max(self._keys, default=0) + 1
            self._install(version, key if key is not None else self.generate_key())
            return version

    def retire(self, version: int) -> None:
        """
        Drop a non-current key version.

        Callers must first make sure no stored record still references it.
        """
        with self._lock:
            if version not in self._keys:
                return
            if version == max(self._keys):
                raise ValidationError(
                    "Cannot retire the current encryption key",
                    field="key_version",
                    error_code=ErrorCode.CONSTRAINT_VIOLATION,
                    key_version=version,
                )
            del self._keys[version]

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


def _associated_data(key_version: int) -> bytes:
    return f"nodrake-vault:v{key_version}".encode("ascii")


class SecretCipher:
    """
    Encrypts and decrypts token material with the key set's keys.

    Never logs plaintext, keys or ciphertext.
    """

    def __init__(self, key_set: EncryptionKeySet):
        self.key_set = key_set

    def current_key_version(self) -> int:
        return self.key_set.current_version

    def needs_reencryption(self, key_version: int) -> bool:
        return key_version != self.key_set.current_version

    def encrypt(self, plaintext: bytes, key_version: Optional[int] = None) -> Tuple[bytes, int]:
        """
        Seal ``plaintext`` with a fresh random nonce.

        Args:
            plaintext: Bytes to encrypt
            key_version: Version to encrypt under (default: current version)

        Returns:
            Tuple of (ciphertext blob, key version used)
        """
        version = key_version if key_version is not None else self.key_set.current_version
        key = self.key_set.get(version)
        if key is None:
            raise validation_failed("key_version", "unknown key version", key_version=version)

        nonce = os.urandom(NONCE_BYTES)
        sealed = AESGCM(key).encrypt(nonce, plaintext, _associated_data(version))
        return nonce + sealed, version

    def decrypt(self, ciphertext: bytes, key_version: int) -> bytes:
        """
        Open a blob produced by ``encrypt``.

        Raises:
            DecryptionError: Unknown key version, truncated blob, or failed authentication
        """
        key = self.key_set.get(key_version)
        if key is None:
            raise DecryptionError(reason="unknown_key_version", key_version=key_version)

        blob = bytes(ciphertext)
        if len(blob) < NONCE_BYTES + TAG_BYTES:
            raise DecryptionError(reason="truncated", key_version=key_version)

        nonce, sealed = blob[:NONCE_BYTES], blob[NONCE_BYTES:]
        try:
            return AESGCM(key).decrypt(nonce, sealed, _associated_data(key_version))
        except InvalidTag:
            raise DecryptionError(reason="authentication_failed", key_version=key_version) from None

    def encrypt_token(self, token: str, key_version: Optional[int] = None) -> Tuple[bytes, int]:
        return self.encrypt(token.encode("utf-8"), key_version)

    def decrypt_token(self, ciphertext: bytes, key_version: int) -> str:
        return self.decrypt(ciphertext, key_version).decode("utf-8")

    def reencrypt(self, ciphertext: bytes, key_version: int) -> Tuple[bytes, int]:
        """Decrypt under ``key_version`` and seal again under the current version."""
        return self.encrypt(self.decrypt(ciphertext, key_version))
