"""Credential resolution for the row store and the identity provider.

``DATABASE_URL``, ``PG_PASSWORD`` and ``SUPABASE_SERVICE_ROLE_KEY`` may hold
either a literal (local development) or a reference into AWS Secrets
Manager or GCP Secret Manager.
"""

from __future__ import annotations

import json
import logging
import os
from urllib.parse import quote

logger = logging.getLogger("provisioning.secrets")

_AWS_PREFIX = "aws-secret://"
_GCP_PREFIX = "gcp-secret://"


def resolve_secret(value: str) -> str:
    """Resolve a credential reference to its plaintext value.

    Supported formats:
      - "aws-secret://secret-name"                   -> AWS Secrets Manager
      - "aws-secret://secret-name#key"               -> one key of a JSON secret
      - "gcp-secret://NAME"                          -> latest version in GCP_PROJECT_ID
      - "gcp-secret://projects/P/secrets/N/versions/V"
      - anything else                                -> returned as-is
    """
    if value.startswith(_AWS_PREFIX):
        return _resolve_aws_secret(value[len(_AWS_PREFIX):])
    if value.startswith(_GCP_PREFIX):
        return _resolve_gcp_secret(value[len(_GCP_PREFIX):])
    return value


def _resolve_aws_secret(ref: str) -> str:
    import boto3

    secret_name, _, json_key = ref.partition("#")
    client = boto3.client("secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1"))

    logger.debug("Resolving AWS secret %s", secret_name)
    secret_string = client.get_secret_value(SecretId=secret_name)["SecretString"]
    if not json_key:
        return secret_string

    data = json.loads(secret_string)
    if json_key not in data:
        raise ValueError(f"AWS secret {secret_name} has no key {json_key!r}")
    return str(data[json_key])


def _resolve_gcp_secret(ref: str) -> str:
    from google.cloud import secretmanager

    if ref.startswith("projects/"):
        name = ref
    else:
        project = os.environ.get("GCP_PROJECT_ID", "")
        if not project:
            raise ValueError(
                f"gcp-secret://{ref} needs GCP_PROJECT_ID or a full projects/... path"
            )
        name = f"projects/{project}/secrets/{ref}/versions/latest"

    logger.debug("Resolving GCP secret %s", name)
    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": name})
    # Strip the trailing newline left by secrets created from files
    return response.payload.data.decode("UTF-8").rstrip("\r\n")


def resolve_database_url() -> str:
    """Resolve the row-store DSN.

    ``DATABASE_URL`` wins; otherwise the URL is assembled from ``PG_*``
    variables. ``PG_PASSWORD`` has no default.
    """
    url = os.environ.get("DATABASE_URL", "")
    if url:
        return resolve_secret(url)

    password_raw = os.environ.get("PG_PASSWORD", "")
    if not password_raw:
        raise ValueError("DATABASE_URL or PG_PASSWORD environment variable is required")

    host = os.environ.get("PG_HOST", "localhost")
    port = os.environ.get("PG_PORT", "5432")
    user = os.environ.get("PG_USER", "postgres")
    database = os.environ.get("PG_DATABASE", "postgres")
    password = resolve_secret(password_raw)

    # User and password are percent-encoded inside the URL
    return f"postgresql://{quote(user, safe='')}:{quote(password, safe='')}@{host}:{port}/{database}"
