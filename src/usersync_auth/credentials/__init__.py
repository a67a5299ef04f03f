"""
Credential storage for the client-credentials exchange.

Usage:
    from usersync_auth.credentials import CredentialSet, CredentialStore

    store = CredentialStore()
    store.save(CredentialSet(client_id="...", client_secret="...",
                             tenant_id="...", region="EU"))
    creds = store.get()
"""

from usersync_auth.credentials.encryption import (
    Base64Obfuscator,
    DecryptionError,
    Encryptor,
    FallbackEncryptor,
    FernetEncryptor,
    SessionKeyring,
    default_encryptor,
)
from usersync_auth.credentials.models import CredentialSet, credentials_from_env
from usersync_auth.credentials.regions import (
    DEFAULT_REGION,
    REGIONS,
    Region,
    resolve_region,
)
from usersync_auth.credentials.store import (
    CredentialBackend,
    CredentialStore,
    InMemoryCredentialBackend,
    JsonFileCredentialBackend,
)

__all__ = [
    "CredentialSet",
    "credentials_from_env",
    "CredentialStore",
    "CredentialBackend",
    "InMemoryCredentialBackend",
    "JsonFileCredentialBackend",
    "Encryptor",
    "SessionKeyring",
    "FernetEncryptor",
    "Base64Obfuscator",
    "FallbackEncryptor",
    "DecryptionError",
    "default_encryptor",
    "Region",
    "REGIONS",
    "DEFAULT_REGION",
    "resolve_region",
]
