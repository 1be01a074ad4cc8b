"""GCP Cloud Run Job entry point for admin role reconciliation.

The identity and desired state come from environment variables.

Usage:
  PROVISIONING_REFERENCE=someone@example.com PROVISIONING_DESIRED=granted \
      python -m scripts.provisioning.entrypoints.gcp_cloudrun
"""

from __future__ import annotations

import json
import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from scripts.provisioning.cli import exit_code_for
from scripts.provisioning.config import load_config
from scripts.provisioning.db import Database
from scripts.provisioning.identity_provider import IdentityProviderClient
from scripts.provisioning.logging_config import configure_logging
from scripts.provisioning.models import DesiredState
from scripts.provisioning.reconciler import build_reconciler

logger = logging.getLogger("provisioning.cloudrun")


def main() -> None:
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    reference = os.environ.get("PROVISIONING_REFERENCE", "")
    if not reference:
        logger.error("PROVISIONING_REFERENCE env var is required")
        sys.exit(1)
    try:
        desired = DesiredState(os.environ.get("PROVISIONING_DESIRED", "granted"))
    except ValueError:
        logger.error("PROVISIONING_DESIRED must be 'granted' or 'revoked'")
        sys.exit(1)

    logger.info("Cloud Run Job started", extra={"identity": reference, "desired": desired.value})

    config = load_config()
    db = Database(config.database)
    idp = IdentityProviderClient(config.identity_provider)

    try:
        result = build_reconciler(config, db, idp).reconcile_admin(reference, desired)
    finally:
        idp.close()
        db.close()

    print(json.dumps(result.to_dict(), default=str))
    sys.exit(exit_code_for([result]))


if __name__ == "__main__":
    main()
