"""Encryption of gateway secrets at rest.

Secrets are Fernet tokens (AES-128-CBC with HMAC-SHA256). Keys are derived
from ``KMS_ENCRYPTION_KEY`` with PBKDF2 and carry a version: new tokens use
the newest key, and any key still active can decrypt. Deactivating a key
makes every token written under it unreadable.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from tenantpay.core.config import settings

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000

# Every Fernet token starts with version byte 0x80 followed by a timestamp
FERNET_PREFIX = "gAAAAA"


@dataclass
class KeyVersion:
    version: int
    key: bytes = field(repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_active: bool = True


def derive_key(master_key: str, version: int) -> bytes:
    """Derive the Fernet key for ``version`` from a master key.

    The salt depends only on the version, so every process sharing the
    master key derives the same key.
    """
    salt = hashlib.sha256(f"tenantpay-kms-v{version}".encode()).digest()[:16]
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=PBKDF2_ITERATIONS)
    return base64.urlsafe_b64encode(kdf.derive(master_key.encode()))


class SecretKeyring:
    """Versioned set of encryption keys."""

    def __init__(self, master_key: str):
        self._keys: dict[int, KeyVersion] = {1: KeyVersion(1, derive_key(master_key, 1))}
        self._current_version = 1

    @property
    def current_version(self) -> int:
        return self._current_version

    def active_keys(self) -> list[KeyVersion]:
        """Active keys, newest first."""
        return sorted(
            (key for key in self._keys.values() if key.is_active),
            key=lambda key: key.version,
            reverse=True,
        )

    def rotate_key(self, new_master_key: Optional[str] = None) -> KeyVersion:
        """Add a key version and encrypt with it from now on."""
        version = self._current_version + 1
        key = KeyVersion(version, derive_key(new_master_key or settings.KMS_ENCRYPTION_KEY, version))
        self._keys[version] = key
        self._current_version = version
        logger.info(f"Rotated gateway secret encryption key to version {version}")
        return key

    def deactivate_key(self, version: int) -> bool:
        """Stop decrypting with ``version``. The current key cannot be deactivated."""
        key = self._keys.get(version)
        if key is None or version == self._current_version:
            return False
        key.is_active = False
        logger.info(f"Deactivated gateway secret encryption key version {version}")
        return True

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise ValueError("Cannot encrypt empty data")
        return Fernet(self._keys[self._current_version].key).encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> Optional[str]:
        """Decrypt with any active key, or return None."""
        fernets = MultiFernet([Fernet(key.key) for key in self.active_keys()])
        try:
            return fernets.decrypt(token.encode()).decode()
        except InvalidToken:
            return None


_keyring: Optional[SecretKeyring] = None


def get_key_manager() -> SecretKeyring:
    """Process keyring, built from settings on first use."""
    global _keyring
    if _keyring is None:
        _keyring = SecretKeyring(settings.KMS_ENCRYPTION_KEY)
    return _keyring


def reset_key_manager() -> None:
    """Drop the process keyring so the next use re-reads settings."""
    global _keyring
    _keyring = None


def encrypt_secret(plaintext: str) -> str:
    return get_key_manager().encrypt(plaintext)


def decrypt_secret(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    return get_key_manager().decrypt(token)


def is_kms_encrypted(value: Optional[str]) -> bool:
    """Whether ``value`` looks like a Fernet token."""
    return bool(value) and value.startswith(FERNET_PREFIX) and len(value) > 50
