"""Read-only post-check of both stores after reconciliation."""

from __future__ import annotations

import logging

from scripts.provisioning.errors import IdentityProviderError
from scripts.provisioning.identity_provider import IdentityProviderClient
from scripts.provisioning.models import DesiredState, VerificationReport
from scripts.provisioning.role_store import RoleStore

logger = logging.getLogger("provisioning.verifier")


class Verifier:
    def __init__(
        self,
        role_store: RoleStore,
        identity_provider: IdentityProviderClient,
        admin_role: str = "admin",
    ) -> None:
        self.role_store = role_store
        self.identity_provider = identity_provider
        self.admin_role = admin_role

    def verify(self, identity_key: str, desired: DesiredState) -> VerificationReport:
        """Re-read roles and metadata.

        ``verified`` depends only on the role table. Metadata agreement is
        reported alongside and a failed metadata read is a warning.
        """
        roles = self.role_store.list_roles(identity_key)
        admin_count = sum(1 for r in roles if r.role == self.admin_role)
        expected = 1 if desired.is_admin else 0
        verified = admin_count == expected

        report = VerificationReport(verified=verified, roles=roles)
        if not verified:
            report.mismatch = (
                f"expected {expected} {self.admin_role} row(s) for {identity_key}, "
                f"found {admin_count}"
            )
            logger.error(
                "Verification mismatch: %s",
                report.mismatch,
                extra={"identity": identity_key, "desired": desired.value},
            )

        try:
            identity = self.identity_provider.get_identity_by_id(identity_key)
        except IdentityProviderError as exc:
            report.warnings.append(f"metadata read failed for {identity_key}: {exc}")
            return report

        if identity is None:
            report.warnings.append(f"identity {identity_key} not found when reading metadata")
            return report

        report.metadata = {
            "user_metadata": identity.user_metadata,
            "app_metadata": identity.app_metadata,
        }
        report.metadata_agrees = bool(identity.user_metadata.get("is_admin")) == desired.is_admin
        if not report.metadata_agrees:
            report.warnings.append(
                f"metadata is_admin={identity.user_metadata.get('is_admin')!r} "
                f"disagrees with desired {desired.value}"
            )
        return report
