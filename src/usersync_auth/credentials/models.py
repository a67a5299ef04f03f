"""Credential set model for the client-credentials exchange."""

import os

from pydantic import BaseModel, Field, SecretStr, field_validator

from usersync_auth.credentials.regions import Region, resolve_region

# Fragments left behind by unfilled configuration templates
PLACEHOLDER_MARKERS = ("YOUR_", "_HERE")

ENV_CLIENT_ID = "IDP_CLIENT_ID"
ENV_CLIENT_SECRET = "IDP_CLIENT_SECRET"
ENV_TENANT_ID = "IDP_TENANT_ID"
ENV_REGION = "IDP_REGION"


class CredentialSet(BaseModel):
    """Validated client credentials for one identity-provider tenant.

    Attributes:
        client_id: OAuth2 client (application) ID
        client_secret: Client secret; masked in repr and dumps
        tenant_id: Environment / tenant ID placed in the token URL
        region: Region code or alias (see ``regions.resolve_region``)
    """

    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr
    tenant_id: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("client_id", "tenant_id", "region")
    @classmethod
    def validate_non_empty_strings(cls, v: str, info) -> str:
        """Ensure string fields are not empty, whitespace or template placeholders."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty or whitespace")
        if any(marker in v for marker in PLACEHOLDER_MARKERS):
            raise ValueError(f"{info.field_name} still contains a placeholder value")
        return v.strip()

    @field_validator("client_secret")
    @classmethod
    def validate_secret(cls, v: SecretStr) -> SecretStr:
        raw = v.get_secret_value().strip()
        if not raw:
            raise ValueError("client_secret cannot be empty or whitespace")
        if any(marker in raw for marker in PLACEHOLDER_MARKERS):
            raise ValueError("client_secret still contains a placeholder value")
        return SecretStr(raw)

    @property
    def resolved_region(self) -> Region:
        return resolve_region(self.region)

    @property
    def token_url(self) -> str:
        return self.resolved_region.token_url(self.tenant_id)

    def masked(self) -> dict[str, str]:
        """Display-safe summary with the secret reduced to its length."""
        secret = self.client_secret.get_secret_value()
        return {
            "client_id": self.client_id,
            "client_secret": "*" * min(len(secret), 8),
            "tenant_id": self.tenant_id,
            "region": self.resolved_region.code,
        }


def credentials_from_env(default_region: str = "NA") -> CredentialSet | None:
    """Build credentials from IDP_* environment variables.

    Returns None when any of client id, secret or tenant id is unset.

    Raises:
        pydantic.ValidationError: If the variables are set but invalid
    """
    client_id = os.getenv(ENV_CLIENT_ID, "")
    client_secret = os.getenv(ENV_CLIENT_SECRET, "")
    tenant_id = os.getenv(ENV_TENANT_ID, "")
    if not (client_id and client_secret and tenant_id):
        return None
    return CredentialSet(
        client_id=client_id,
        client_secret=client_secret,
        tenant_id=tenant_id,
        region=os.getenv(ENV_REGION) or default_region,
    )


__all__ = ["CredentialSet", "credentials_from_env", "PLACEHOLDER_MARKERS"]
