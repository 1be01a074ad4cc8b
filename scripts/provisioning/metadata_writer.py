"""Mirror the admin flag into the identity provider's metadata.

The ``user_roles`` table is what authorization checks read; the metadata
flag only feeds the provider's own session claims. Failures here are
returned as warnings and never abort a run.
"""

from __future__ import annotations

import logging

from scripts.provisioning.errors import IdentityProviderError
from scripts.provisioning.identity_provider import IdentityProviderClient
from scripts.provisioning.models import MetadataOutcome, MetadataWarning

logger = logging.getLogger("provisioning.metadata_writer")


class IdentityMetadataWriter:
    def __init__(self, identity_provider: IdentityProviderClient, admin_role: str = "admin") -> None:
        self.identity_provider = identity_provider
        self.admin_role = admin_role

    def set_admin_flag(self, identity_key: str, value: bool) -> MetadataOutcome:
        try:
            self.identity_provider.update_identity_metadata(
                identity_key,
                user_metadata={"is_admin": value},
                app_metadata={"role": self.admin_role if value else None},
            )
        except IdentityProviderError as exc:
            warning = MetadataWarning(
                identity_key=identity_key,
                operation="metadata.set_admin_flag",
                message=str(exc),
            )
            logger.warning(
                "Metadata update failed: %s",
                exc,
                extra={"identity": identity_key, "operation": warning.operation},
            )
            return MetadataOutcome(success=False, warning=warning)

        logger.info("Metadata is_admin=%s", value, extra={"identity": identity_key})
        return MetadataOutcome(success=True)
