"""Credential store with encrypted-at-rest client secrets."""

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from usersync_auth.credentials.encryption import (
    DecryptionError,
    Encryptor,
    default_encryptor,
)
from usersync_auth.credentials.models import CredentialSet

logger = logging.getLogger(__name__)


class CredentialBackend(Protocol):
    """Persistence for one serialized credential record."""

    def load(self) -> dict[str, Any] | None: ...

    def save(self, record: dict[str, Any]) -> None: ...

    def clear(self) -> None: ...


class InMemoryCredentialBackend:
    """Keeps the record for the lifetime of the process only."""

    def __init__(self):
        self._record: dict[str, Any] | None = None

    def load(self) -> dict[str, Any] | None:
        return dict(self._record) if self._record is not None else None

    def save(self, record: dict[str, Any]) -> None:
        self._record = dict(record)

    def clear(self) -> None:
        self._record = None


class JsonFileCredentialBackend:
    """
    Stores the record as a JSON file readable only by the owner.

    Writes go to a temp file in the same directory and are moved into
    place, so a crash never leaves a half-written record.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Credential file {self.path} does not contain an object")
        return data

    def save(self, record: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            os.chmod(fd, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class CredentialStore:
    """
    Holds one credential set, encrypting the client secret before persisting.

    Usage:
        store = CredentialStore()
        store.save(CredentialSet(client_id="c1", client_secret="s1",
                                 tenant_id="t1", region="NorthAmerica"))
        creds = store.get()   # None if absent or undecryptable

    Args:
        backend: Where the serialized record lives (default: in memory)
        encryptor: Secret encryption capability (default: Fernet with a
            session key, base64 fallback)
    """

    def __init__(
        self,
        backend: CredentialBackend | None = None,
        encryptor: Encryptor | None = None,
    ):
        self.backend = backend or InMemoryCredentialBackend()
        self.encryptor = encryptor or default_encryptor()

    def save(self, credentials: CredentialSet | Mapping[str, Any]) -> bool:
        """
        Persist credentials with the secret encrypted.

        Args:
            credentials: CredentialSet or a mapping with client_id,
                client_secret, tenant_id and region

        Returns:
            True if stored, False if any field was missing/invalid or the
            backend failed
        """
        if not isinstance(credentials, CredentialSet):
            try:
                credentials = CredentialSet.model_validate(dict(credentials or {}))
            except ValidationError as e:
                fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
                logger.error(f"Cannot save incomplete credentials: invalid {fields}")
                return False

        record = {
            "client_id": credentials.client_id,
            "client_secret": self.encryptor.encrypt(credentials.client_secret.get_secret_value()),
            "tenant_id": credentials.tenant_id,
            "region": credentials.region,
            "saved_at": datetime.now(UTC).isoformat(),
        }

        try:
            self.backend.save(record)
        except OSError as e:
            logger.error(f"Failed to persist credentials: {e}")
            return False

        logger.info(
            "Credentials saved",
            extra={
                "client_id": credentials.client_id,
                "tenant_id": credentials.tenant_id,
                "region": credentials.region,
                "encryption_scheme": record["client_secret"].partition(":")[0],
            },
        )
        return True

    def get(self) -> CredentialSet | None:
        """
        Load and decrypt the stored credentials.

        Returns:
            CredentialSet, or None if nothing is stored or the record cannot
            be read or decrypted (e.g. written under a previous session key)
        """
        try:
            record = self.backend.load()
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read stored credentials: {e}")
            return None

        if not record:
            return None

        stored_secret = record.get("client_secret")
        if not isinstance(stored_secret, str):
            logger.warning("Stored credentials have no client secret")
            return None

        try:
            secret = self.encryptor.decrypt(stored_secret)
        except DecryptionError as e:
            logger.warning(f"Stored client secret could not be decrypted: {e}")
            return None

        try:
            return CredentialSet(
                client_id=record.get("client_id") or "",
                client_secret=secret,
                tenant_id=record.get("tenant_id") or "",
                region=record.get("region") or "",
            )
        except ValidationError:
            logger.warning("Stored credentials are incomplete")
            return None

    def clear(self) -> bool:
        """Remove stored credentials. Returns False if the backend failed."""
        try:
            self.backend.clear()
        except OSError as e:
            logger.error(f"Failed to clear credentials: {e}")
            return False
        logger.info("Credentials cleared")
        return True

    def has(self) -> bool:
        """True if usable credentials can be loaded right now."""
        return self.get() is not None


__all__ = [
    "CredentialStore",
    "CredentialBackend",
    "InMemoryCredentialBackend",
    "JsonFileCredentialBackend",
]
