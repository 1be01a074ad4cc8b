"""Value types shared by the provisioning components."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional


class DesiredState(str, enum.Enum):
    GRANTED = "granted"
    REVOKED = "revoked"

    @property
    def is_admin(self) -> bool:
        return self is DesiredState.GRANTED


class ReconcileState(str, enum.Enum):
    INIT = "init"
    SCHEMA_ENSURED = "schema_ensured"
    IDENTITY_RESOLVED = "identity_resolved"
    ROLE_CONVERGED = "role_converged"
    METADATA_ATTEMPTED = "metadata_attempted"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass(frozen=True)
class Identity:
    key: str
    email: Optional[str] = None
    user_metadata: dict[str, Any] = field(default_factory=dict)
    app_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RoleRecord:
    identity_key: str
    role: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity_key": self.identity_key,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class SchemaTable:
    name: str
    version: int
    ddl: str


@dataclass(frozen=True)
class EnsureOutcome:
    table: str
    created: bool


@dataclass(frozen=True)
class MetadataWarning:
    identity_key: str
    operation: str
    message: str

    def __str__(self) -> str:
        return f"{self.operation} failed for {self.identity_key}: {self.message}"


@dataclass(frozen=True)
class MetadataOutcome:
    """Result of mirroring the admin flag into the identity provider."""

    success: bool
    warning: Optional[MetadataWarning] = None


@dataclass
class VerificationReport:
    verified: bool
    roles: list[RoleRecord] = field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None
    metadata_agrees: Optional[bool] = None
    mismatch: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class ProvisioningResult:
    reference: str
    desired: DesiredState
    state: ReconcileState = ReconcileState.INIT
    identity_key: Optional[str] = None
    schema: list[EnsureOutcome] = field(default_factory=list)
    roles_cleared: Optional[int] = None
    role_granted: Optional[RoleRecord] = None
    metadata_updated: Optional[bool] = None
    verified: bool = False
    metadata_agrees: Optional[bool] = None
    roles: list[RoleRecord] = field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None
    mismatch: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    error: Optional[dict[str, Optional[str]]] = None
    duration_s: Optional[float] = None

    @property
    def outcome(self) -> str:
        if self.state is not ReconcileState.VERIFIED or not self.verified:
            return "failed"
        if self.warnings:
            return "verified_with_warnings"
        return "verified"

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference": self.reference,
            "identity_key": self.identity_key,
            "desired": self.desired.value,
            "state": self.state.value,
            "outcome": self.outcome,
            "schema": [asdict(s) for s in self.schema],
            "role_store": {
                "cleared": self.roles_cleared,
                "granted": self.role_granted.to_dict() if self.role_granted else None,
            },
            "metadata_store": {"updated": self.metadata_updated},
            "verified": self.verified,
            "metadata_agrees": self.metadata_agrees,
            "roles": [r.to_dict() for r in self.roles],
            "metadata": self.metadata,
            "mismatch": self.mismatch,
            "warnings": list(self.warnings),
            "error": self.error,
            "duration_s": self.duration_s,
        }
