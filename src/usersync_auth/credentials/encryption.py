"""
Encryption of stored client secrets.

The credential store only depends on the :class:`Encryptor` protocol. Two
implementations are provided:

- :class:`FernetEncryptor`: Fernet symmetric encryption (AES-128-CBC with
  HMAC) keyed by a :class:`SessionKeyring`. The key is generated once per
  process, held only in memory and never written anywhere, so ciphertext
  left on disk is unreadable after the process exits.
- :class:`Base64Obfuscator`: reversible base64 encoding. This is NOT
  encryption; it only keeps secrets from being readable at a glance.

:class:`FallbackEncryptor` wraps a primary encryptor and downgrades to the
obfuscator, logging a warning, when the primary is unavailable or fails.

Every stored value carries a ``<scheme>:`` prefix so decryption can pick
the matching implementation.
"""

import base64
import binascii
import logging
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

FERNET_SCHEME = "fernet"
BASE64_SCHEME = "b64"


class DecryptionError(Exception):
    """Stored value could not be decrypted with the available key/scheme."""


class Encryptor(Protocol):
    """Capability consumed by the credential store."""

    scheme: str

    def encrypt(self, plaintext: str) -> str:
        """Return ``<scheme>:<ciphertext>``."""
        ...

    def decrypt(self, stored: str) -> str:
        """Reverse :meth:`encrypt`; raises DecryptionError on failure."""
        ...


def split_scheme(stored: str) -> tuple[str | None, str]:
    """Split a stored value into (scheme, payload)."""
    scheme, sep, payload = stored.partition(":")
    if not sep:
        return None, stored
    return scheme, payload


class SessionKeyring:
    """Holds one Fernet key for the lifetime of this object.

    The key is created lazily on first use and never persisted.
    """

    def __init__(self):
        self._key: bytes | None = None

    def get_key(self) -> bytes:
        if self._key is None:
            self._key = Fernet.generate_key()
            logger.debug("Generated session encryption key")
        return self._key

    def rotate(self) -> None:
        """Drop the current key; values encrypted under it become unreadable."""
        self._key = None


class FernetEncryptor:
    """Fernet encryption keyed by a session keyring."""

    scheme = FERNET_SCHEME

    def __init__(self, keyring: SessionKeyring | None = None):
        self.keyring = keyring or SessionKeyring()

    def _fernet(self) -> Fernet:
        return Fernet(self.keyring.get_key())

    def encrypt(self, plaintext: str) -> str:
        token = self._fernet().encrypt(plaintext.encode("utf-8"))
        return f"{self.scheme}:{token.decode('ascii')}"

    def decrypt(self, stored: str) -> str:
        scheme, payload = split_scheme(stored)
        if scheme != self.scheme:
            raise DecryptionError(f"Expected '{self.scheme}' value, got '{scheme}'")
        try:
            return self._fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise DecryptionError("Stored secret was encrypted with a different session key") from e


class Base64Obfuscator:
    """Reversible base64 encoding. Provides no confidentiality."""

    scheme = BASE64_SCHEME

    def encrypt(self, plaintext: str) -> str:
        encoded = base64.b64encode(plaintext.encode("utf-8")).decode("ascii")
        return f"{self.scheme}:{encoded}"

    def decrypt(self, stored: str) -> str:
        scheme, payload = split_scheme(stored)
        if scheme != self.scheme:
            raise DecryptionError(f"Expected '{self.scheme}' value, got '{scheme}'")
        try:
            return base64.b64decode(payload.encode("ascii"), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeError) as e:
            raise DecryptionError("Stored secret is not valid base64") from e


class FallbackEncryptor:
    """
    Encryptor that degrades to base64 obfuscation instead of failing.

    Args:
        primary: Preferred encryptor, or None when no cipher is available
        fallback: Reversible encoder used on downgrade
    """

    def __init__(
        self,
        primary: Encryptor | None,
        fallback: Encryptor | None = None,
    ):
        self.primary = primary
        self.fallback = fallback or Base64Obfuscator()
        self._warned = False

    @property
    def scheme(self) -> str:
        return self.primary.scheme if self.primary is not None else self.fallback.scheme

    def _warn_downgrade(self, reason: str) -> None:
        logger.warning(
            f"Credential encryption unavailable ({reason}); storing secret with "
            f"reversible {self.fallback.scheme} encoding",
            extra={"encryption_scheme": self.fallback.scheme},
        )
        self._warned = True

    @property
    def downgraded(self) -> bool:
        """True once any value was written with the fallback encoding."""
        return self._warned

    def encrypt(self, plaintext: str) -> str:
        if self.primary is None:
            self._warn_downgrade("no cipher configured")
            return self.fallback.encrypt(plaintext)
        try:
            return self.primary.encrypt(plaintext)
        except Exception as e:
            self._warn_downgrade(f"{type(e).__name__}: {e}")
            return self.fallback.encrypt(plaintext)

    def decrypt(self, stored: str) -> str:
        scheme, _ = split_scheme(stored)
        if scheme == self.fallback.scheme:
            return self.fallback.decrypt(stored)
        if self.primary is not None and scheme == self.primary.scheme:
            return self.primary.decrypt(stored)
        raise DecryptionError(f"Unknown encryption scheme '{scheme}'")


def default_encryptor(keyring: SessionKeyring | None = None) -> FallbackEncryptor:
    """Fernet with session key, falling back to base64 obfuscation."""
    return FallbackEncryptor(FernetEncryptor(keyring))


__all__ = [
    "Encryptor",
    "SessionKeyring",
    "FernetEncryptor",
    "Base64Obfuscator",
    "FallbackEncryptor",
    "DecryptionError",
    "default_encryptor",
    "split_scheme",
    "FERNET_SCHEME",
    "BASE64_SCHEME",
]
