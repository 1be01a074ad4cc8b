"""Converge one identity's admin role across the role table and metadata mirror.

Sequence per run:

    init -> schema_ensured -> identity_resolved -> role_converged
         -> metadata_attempted -> verified | failed

Steps up to role convergence are fatal: the first ``ProvisioningError``
stops the run and is recorded on the result. The metadata mirror is
advisory and only adds warnings. Nothing is retried; every step is
idempotent, so re-running the whole reconciliation is the retry.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from scripts.provisioning.config import ProvisioningConfig
from scripts.provisioning.db import Database
from scripts.provisioning.errors import ProvisioningError
from scripts.provisioning.identity_provider import IdentityProviderClient
from scripts.provisioning.identity_resolver import IdentityResolver, normalize_reference
from scripts.provisioning.metadata_writer import IdentityMetadataWriter
from scripts.provisioning.models import (
    DesiredState,
    ProvisioningResult,
    ReconcileState,
    SchemaTable,
    VerificationReport,
)
from scripts.provisioning.role_store import RoleStore
from scripts.provisioning.schema import PREREQUISITE_TABLES
from scripts.provisioning.schema_ensurer import SchemaEnsurer
from scripts.provisioning.verifier import Verifier

logger = logging.getLogger("provisioning.reconciler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    def __init__(
        self,
        schema_ensurer: SchemaEnsurer,
        resolver: IdentityResolver,
        role_store: RoleStore,
        metadata_writer: IdentityMetadataWriter,
        verifier: Verifier,
        admin_role: str = "admin",
        prerequisite_tables: Sequence[SchemaTable] = PREREQUISITE_TABLES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.schema_ensurer = schema_ensurer
        self.resolver = resolver
        self.role_store = role_store
        self.metadata_writer = metadata_writer
        self.verifier = verifier
        self.admin_role = admin_role
        self.prerequisite_tables = tuple(prerequisite_tables)
        self.clock = clock

    def reconcile_admin(self, reference: str, desired: DesiredState) -> ProvisioningResult:
        result = ProvisioningResult(reference=reference, desired=DesiredState(desired))
        started = time.monotonic()
        try:
            self._run(result)
        except ProvisioningError as exc:
            result.state = ReconcileState.FAILED
            result.error = exc.to_dict()
            logger.error(
                "Reconciliation failed during %s: %s",
                exc.operation,
                exc,
                extra={
                    "identity": result.identity_key or reference,
                    "operation": exc.operation,
                    "desired": result.desired.value,
                },
            )
        result.duration_s = round(time.monotonic() - started, 3)
        logger.info(
            "Reconciliation finished: %s",
            result.outcome,
            extra={
                "identity": result.identity_key or reference,
                "desired": result.desired.value,
                "state": result.state.value,
                "duration_s": result.duration_s,
            },
        )
        return result

    def _run(self, result: ProvisioningResult) -> None:
        desired = result.desired

        # Step 1: prerequisite schema
        result.schema = self.schema_ensurer.ensure_all(self.prerequisite_tables)
        result.state = ReconcileState.SCHEMA_ENSURED

        # Step 2: identity
        identity = self.resolver.resolve(result.reference)
        result.identity_key = identity.key
        result.state = ReconcileState.IDENTITY_RESOLVED

        # Step 3: role rows; clear first so stale or duplicate rows never survive
        result.roles_cleared = self.role_store.clear_roles(identity.key, self.admin_role)
        if desired.is_admin:
            result.role_granted = self.role_store.grant_role(
                identity.key, self.admin_role, self.clock()
            )
        result.state = ReconcileState.ROLE_CONVERGED

        # Step 4: metadata mirror, advisory only
        outcome = self.metadata_writer.set_admin_flag(identity.key, desired.is_admin)
        result.metadata_updated = outcome.success
        if outcome.warning is not None:
            result.warnings.append(str(outcome.warning))
        result.state = ReconcileState.METADATA_ATTEMPTED

        # Step 5: read back
        self._apply_report(result, self.verifier.verify(identity.key, desired))
        result.state = ReconcileState.VERIFIED

    @staticmethod
    def _apply_report(result: ProvisioningResult, report: VerificationReport) -> None:
        result.verified = report.verified
        result.roles = report.roles
        result.metadata = report.metadata
        result.metadata_agrees = report.metadata_agrees
        result.mismatch = report.mismatch
        result.warnings.extend(report.warnings)

    def check_admin(self, reference: str) -> ProvisioningResult:
        """Resolve and verify against ``granted`` without mutating anything."""
        result = ProvisioningResult(reference=reference, desired=DesiredState.GRANTED)
        try:
            identity = self.resolver.resolve(reference)
            result.identity_key = identity.key
            result.state = ReconcileState.IDENTITY_RESOLVED
            self._apply_report(result, self.verifier.verify(identity.key, DesiredState.GRANTED))
            result.state = ReconcileState.VERIFIED
        except ProvisioningError as exc:
            result.state = ReconcileState.FAILED
            result.error = exc.to_dict()
        return result

    def reconcile_many(
        self,
        references: Iterable[str],
        desired: DesiredState,
        max_workers: int = 4,
    ) -> list[ProvisioningResult]:
        """Reconcile several identities concurrently.

        References spelling the same key or email (case, hyphenation,
        whitespace) are collapsed to a single run, since two runs for the
        same identity are not linearizable. An email and the key it resolves
        to are only known to match after resolution and are not collapsed.
        Results come back in first-seen order.
        """
        unique = list(dict.fromkeys(normalize_reference(r) for r in references))
        if len(unique) <= 1 or max_workers <= 1:
            return [self.reconcile_admin(ref, desired) for ref in unique]

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(self.reconcile_admin, ref, desired) for ref in unique]
            return [f.result() for f in futures]


def build_reconciler(
    config: ProvisioningConfig,
    db: Database,
    identity_provider: Optional[IdentityProviderClient] = None,
) -> Reconciler:
    """Wire the components for one invocation from injected handles."""
    idp = identity_provider or IdentityProviderClient(config.identity_provider)
    role_store = RoleStore(db)
    return Reconciler(
        schema_ensurer=SchemaEnsurer(db),
        resolver=IdentityResolver(db, idp),
        role_store=role_store,
        metadata_writer=IdentityMetadataWriter(idp, admin_role=config.admin_role),
        verifier=Verifier(role_store, idp, admin_role=config.admin_role),
        admin_role=config.admin_role,
    )
