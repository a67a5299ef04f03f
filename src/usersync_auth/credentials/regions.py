"""Identity-provider region table.

Maps region codes and their legacy spellings to the auth domain used for
token requests and the API base URL used by the sync tool. Unrecognized
or empty codes resolve to the North America default.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Region:
    """One identity-provider deployment region."""

    code: str
    name: str
    auth_domain: str
    api_base_url: str

    def token_url(self, tenant_id: str) -> str:
        """Client-credentials token endpoint for a tenant in this region."""
        return f"https://{self.auth_domain}/{tenant_id}/as/token"


NORTH_AMERICA = Region("NA", "North America", "auth.pingone.com", "https://api.pingone.com/v1")
EUROPE = Region("EU", "Europe", "auth.eu.pingone.com", "https://api.eu.pingone.com/v1")
CANADA = Region("CA", "Canada", "auth.ca.pingone.com", "https://api.ca.pingone.com/v1")
ASIA_PACIFIC = Region(
    "AP", "Asia Pacific", "auth.apsoutheast.pingone.com", "https://api.apsoutheast.pingone.com/v1"
)
AUSTRALIA = Region("AU", "Australia", "auth.aus.pingone.com", "https://api.aus.pingone.com/v1")

DEFAULT_REGION = NORTH_AMERICA

REGIONS: dict[str, Region] = {
    r.code: r for r in (NORTH_AMERICA, EUROPE, CANADA, ASIA_PACIFIC, AUSTRALIA)
}

# Lowercased, space-stripped aliases accepted in configuration and user input
_ALIASES = {
    "na": "NA",
    "us": "NA",
    "usa": "NA",
    "northamerica": "NA",
    "eu": "EU",
    "europe": "EU",
    "ca": "CA",
    "canada": "CA",
    "ap": "AP",
    "apac": "AP",
    "asia": "AP",
    "asiapacific": "AP",
    "au": "AU",
    "aus": "AU",
    "australia": "AU",
}


def normalize_region_code(region: str | None) -> str | None:
    """Canonical region code for ``region``, or None if unrecognized."""
    if not region:
        return None
    return _ALIASES.get(region.replace(" ", "").replace("_", "").lower())


def resolve_region(region: str | None) -> Region:
    """Look up a region by code or alias, falling back to the default."""
    code = normalize_region_code(region)
    return REGIONS[code] if code else DEFAULT_REGION


__all__ = [
    "Region",
    "REGIONS",
    "DEFAULT_REGION",
    "normalize_region_code",
    "resolve_region",
]
