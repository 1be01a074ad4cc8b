"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev, .env files)
  - AWS Secrets Manager (aws-secret://name#key)
  - GCP Secret Manager (gcp-secret://name)

Credentials are never baked into source: the database password and the
identity provider service-role key must come from the environment or a
secret manager.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from scripts.provisioning.secrets import resolve_database_url, resolve_secret


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 1
    max_connections: int = 4


@dataclass(frozen=True)
class IdentityProviderConfig:
    url: str
    service_role_key: str = field(repr=False)
    request_timeout_s: float = 30.0


@dataclass(frozen=True)
class ProvisioningConfig:
    database: DatabaseConfig
    identity_provider: IdentityProviderConfig
    admin_role: str = "admin"
    max_workers: int = 4


def load_config() -> ProvisioningConfig:
    """Load configuration from environment variables.

    Raises ValueError when a required value is missing.
    """
    load_dotenv()

    database = DatabaseConfig(
        url=resolve_database_url(),
        min_connections=int(os.environ.get("DB_MIN_CONNECTIONS", "1")),
        max_connections=int(os.environ.get("DB_MAX_CONNECTIONS", "4")),
    )

    idp_url = os.environ.get("SUPABASE_URL", "")
    if not idp_url:
        raise ValueError("SUPABASE_URL environment variable is required")

    # Service-role key may come from a secret manager
    key_raw = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    if not key_raw:
        raise ValueError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")

    identity_provider = IdentityProviderConfig(
        url=idp_url.rstrip("/"),
        service_role_key=resolve_secret(key_raw),
        request_timeout_s=float(os.environ.get("IDP_REQUEST_TIMEOUT_S", "30")),
    )

    return ProvisioningConfig(
        database=database,
        identity_provider=identity_provider,
        admin_role=os.environ.get("ADMIN_ROLE_NAME", "admin"),
        max_workers=int(os.environ.get("RECONCILE_MAX_WORKERS", "4")),
    )
