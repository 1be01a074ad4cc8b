"""AWS Lambda handler for admin role reconciliation.

Each invocation reconciles a single identity.

Event format:
  {"reference": "someone@example.com", "desired": "granted"}
  {"reference": "336187fc-...", "desired": "revoked"}
"""

from __future__ import annotations

import json
import logging
import os
import sys

# Ensure the project root is on sys.path for Lambda packaging
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from scripts.provisioning.config import load_config
from scripts.provisioning.db import Database
from scripts.provisioning.identity_provider import IdentityProviderClient
from scripts.provisioning.logging_config import configure_logging
from scripts.provisioning.models import DesiredState
from scripts.provisioning.reconciler import build_reconciler

logger = logging.getLogger("provisioning.lambda")

_STATUS_FOR_OUTCOME = {
    "verified": 200,
    "verified_with_warnings": 200,
    "failed": 500,
}


def handler(event: dict, context) -> dict:
    """Lambda entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    reference = event.get("reference", "")
    if not reference:
        return {"statusCode": 400, "body": "Missing 'reference' in event"}
    try:
        desired = DesiredState(event.get("desired", ""))
    except ValueError:
        return {"statusCode": 400, "body": "'desired' must be 'granted' or 'revoked'"}

    logger.info("Lambda invoked", extra={"identity": reference, "desired": desired.value})

    config = load_config()
    db = Database(config.database)
    idp = IdentityProviderClient(config.identity_provider)

    try:
        result = build_reconciler(config, db, idp).reconcile_admin(reference, desired)
    finally:
        idp.close()
        db.close()

    return {
        "statusCode": _STATUS_FOR_OUTCOME[result.outcome],
        "body": json.dumps(result.to_dict(), default=str),
    }
