"""Error taxonomy for provisioning runs.

Store-boundary errors (``StoreError`` and subclasses) are raised by
``Database.transaction`` after translating driver errors by SQLSTATE.
Components turn them into ``ProvisioningError`` subclasses, which carry the
operation, identity and underlying cause reported on a failed run.
"""

from __future__ import annotations

from typing import Optional


class StoreError(Exception):
    """A row-store operation failed."""

    def __init__(self, message: str, pgcode: Optional[str] = None) -> None:
        super().__init__(message)
        self.pgcode = pgcode


class RelationMissing(StoreError):
    """The queried relation does not exist (SQLSTATE 42P01)."""


class DuplicateRow(StoreError):
    """A uniqueness constraint rejected the row (SQLSTATE 23505)."""


class IdentityProviderError(Exception):
    """The identity provider admin API failed or returned an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProvisioningError(Exception):
    """Fatal error that aborts a reconciliation run."""

    def __init__(
        self,
        message: str,
        operation: str,
        identity: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.identity = identity
        self.cause = cause

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "type": type(self).__name__,
            "message": str(self),
            "operation": self.operation,
            "identity": self.identity,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class SchemaError(ProvisioningError):
    """Table existence check or creation failed; schema state is unknown."""


class IdentityNotFound(ProvisioningError):
    """The reference matched zero identities, or an email matched several."""


class IdentityLookupError(ProvisioningError):
    """The profile store or identity provider could not be queried."""


class RoleStoreError(ProvisioningError):
    """Reading or writing the role table failed."""


class RoleConflict(RoleStoreError):
    """A uniqueness violation surfaced after the clear step: a concurrent run."""
