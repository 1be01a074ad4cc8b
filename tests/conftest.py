"""Pytest configuration, in-memory fakes and fixtures.

No live PostgreSQL or identity provider is needed: the fakes below stand in
for the row store and the admin API at the same seams the real clients
occupy.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest

from scripts.provisioning.errors import DuplicateRow, IdentityProviderError, RoleConflict
from scripts.provisioning.identity_resolver import IdentityResolver
from scripts.provisioning.metadata_writer import IdentityMetadataWriter
from scripts.provisioning.models import EnsureOutcome, Identity, RoleRecord
from scripts.provisioning.reconciler import Reconciler
from scripts.provisioning.verifier import Verifier

U1 = "336187fc-3f85-4de9-9df4-f5d42e5c0b92"
U2 = "9b2f0c1e-7a44-4c1b-8d0e-2f6a1c3b5d77"
U3 = "5e0d4a2b-1c3f-4e6a-9b8d-7c2e1f0a3b4c"


class FakeDatabase:
    """Yields one MagicMock cursor from ``transaction()``.

    Configure ``cursor.execute.side_effect`` to raise store errors the way
    ``Database.transaction`` would after translation.
    """

    def __init__(self) -> None:
        self.cursor = MagicMock()
        self.transactions = 0

    @contextmanager
    def transaction(self):
        self.transactions += 1
        yield self.cursor


class ProfilesCursor:
    def __init__(self, profiles: list[tuple[str, str]]) -> None:
        self._profiles = profiles
        self._rows: list[tuple] = []

    def execute(self, query, params=None) -> None:
        email = params[0].lower()
        matches = [(pid,) for pid, addr in self._profiles if addr.lower() == email]
        self._rows = matches[:2]

    def fetchall(self) -> list[tuple]:
        return list(self._rows)


class ProfilesDatabase:
    """Row store holding only the ``profiles`` relation, keyed by email."""

    def __init__(self, profiles: Optional[list[tuple[str, str]]] = None) -> None:
        self.profiles = list(profiles or [])

    @contextmanager
    def transaction(self):
        yield ProfilesCursor(self.profiles)


class FakeIdentityProvider:
    """In-memory admin API. Metadata updates merge like GoTrue does."""

    def __init__(self, identities: Optional[list[Identity]] = None) -> None:
        self.identities: dict[str, Identity] = {i.key: i for i in identities or []}
        self.fail_updates = False
        self.fail_reads = False
        self.update_calls: list[tuple[str, Any, Any]] = []

    def get_identity_by_id(self, key: str) -> Optional[Identity]:
        if self.fail_reads:
            raise IdentityProviderError("read timed out")
        return self.identities.get(key)

    def update_identity_metadata(self, key, user_metadata=None, app_metadata=None) -> Identity:
        self.update_calls.append((key, user_metadata, app_metadata))
        if self.fail_updates:
            raise IdentityProviderError("HTTP 503", status_code=503)
        current = self.identities[key]
        updated = Identity(
            key=key,
            email=current.email,
            user_metadata={**current.user_metadata, **(user_metadata or {})},
            app_metadata={**current.app_metadata, **(app_metadata or {})},
        )
        self.identities[key] = updated
        return updated


class InMemoryRoleStore:
    """Role table with the (identity, role) uniqueness constraint."""

    def __init__(self) -> None:
        self.rows: list[RoleRecord] = []
        self.insert_race: Optional[RoleRecord] = None
        self._lock = threading.Lock()

    def clear_roles(self, identity_key: str, role: str) -> int:
        with self._lock:
            before = len(self.rows)
            self.rows = [
                r for r in self.rows if not (r.identity_key == identity_key and r.role == role)
            ]
            return before - len(self.rows)

    def grant_role(self, identity_key: str, role: str, timestamp: datetime) -> RoleRecord:
        with self._lock:
            if self.insert_race is not None:
                # Another run inserts between our clear and insert
                self.rows.append(self.insert_race)
                self.insert_race = None
            if any(r.identity_key == identity_key and r.role == role for r in self.rows):
                raise RoleConflict(
                    "duplicate",
                    operation="roles.grant",
                    identity=identity_key,
                    cause=DuplicateRow("duplicate key", pgcode="23505"),
                )
            record = RoleRecord(identity_key=identity_key, role=role, created_at=timestamp)
            self.rows.append(record)
            return record

    def list_roles(self, identity_key: str) -> list[RoleRecord]:
        with self._lock:
            return [r for r in self.rows if r.identity_key == identity_key]

    def list_role_holders(self, role: str) -> list[RoleRecord]:
        with self._lock:
            return [r for r in self.rows if r.role == role]


class FakeSchemaEnsurer:
    def __init__(self) -> None:
        self.existing: set[str] = set()
        self.error: Optional[Exception] = None
        self.calls = 0

    def ensure_all(self, tables) -> list[EnsureOutcome]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        outcomes = []
        for table in tables:
            created = table.name not in self.existing
            self.existing.add(table.name)
            outcomes.append(EnsureOutcome(table=table.name, created=created))
        return outcomes


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def make_identity(key: str, email: str, is_admin: Optional[bool] = None) -> Identity:
    user_metadata = {} if is_admin is None else {"is_admin": is_admin}
    return Identity(key=key, email=email, user_metadata=user_metadata, app_metadata={"provider": "email"})


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider([
        make_identity(U1, "u1@example.com"),
        make_identity(U2, "shared@example.com"),
        make_identity(U3, "shared2@example.com"),
    ])


@pytest.fixture
def profiles_db():
    return ProfilesDatabase([
        (U1, "u1@example.com"),
        (U2, "shared@example.com"),
        (U3, "Shared@Example.com"),
    ])


@pytest.fixture
def role_store():
    return InMemoryRoleStore()


@pytest.fixture
def schema_ensurer():
    return FakeSchemaEnsurer()


@pytest.fixture
def reconciler(schema_ensurer, profiles_db, identity_provider, role_store):
    return Reconciler(
        schema_ensurer=schema_ensurer,
        resolver=IdentityResolver(profiles_db, identity_provider),
        role_store=role_store,
        metadata_writer=IdentityMetadataWriter(identity_provider),
        verifier=Verifier(role_store, identity_provider),
        clock=TickingClock(),
    )
