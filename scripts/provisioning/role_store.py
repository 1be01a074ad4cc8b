"""CRUD over the ``user_roles`` role-mapping table."""

from __future__ import annotations

import logging
from datetime import datetime

from scripts.provisioning.db import Database, rows_as_dicts
from scripts.provisioning.errors import (
    DuplicateRow,
    RoleConflict,
    RoleStoreError,
    StoreError,
)
from scripts.provisioning.models import RoleRecord

logger = logging.getLogger("provisioning.role_store")


def _record(row: dict) -> RoleRecord:
    return RoleRecord(
        identity_key=str(row["user_id"]),
        role=row["role"],
        created_at=row.get("created_at"),
    )


class RoleStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def clear_roles(self, identity_key: str, role: str) -> int:
        """Delete every (identity_key, role) row. Returns the number removed."""
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    "DELETE FROM user_roles WHERE user_id = %s AND role = %s",
                    (identity_key, role),
                )
                deleted = cur.rowcount
        except StoreError as exc:
            raise RoleStoreError(
                f"Clearing {role} for {identity_key} failed: {exc}",
                operation="roles.clear",
                identity=identity_key,
                cause=exc,
            ) from exc
        logger.info("Cleared %d %s row(s)", deleted, role, extra={"identity": identity_key})
        return deleted

    def grant_role(self, identity_key: str, role: str, timestamp: datetime) -> RoleRecord:
        """Insert a role row. Call only after ``clear_roles`` in the same run.

        A uniqueness violation here means another run inserted between our
        clear and insert; it is raised as ``RoleConflict``.
        """
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    """INSERT INTO user_roles (user_id, role, created_at)
                       VALUES (%s, %s, %s)
                       RETURNING user_id, role, created_at""",
                    (identity_key, role, timestamp),
                )
                row = rows_as_dicts(cur)[0]
        except DuplicateRow as exc:
            raise RoleConflict(
                f"{role} row for {identity_key} appeared after clear; concurrent run suspected",
                operation="roles.grant",
                identity=identity_key,
                cause=exc,
            ) from exc
        except StoreError as exc:
            raise RoleStoreError(
                f"Granting {role} to {identity_key} failed: {exc}",
                operation="roles.grant",
                identity=identity_key,
                cause=exc,
            ) from exc
        logger.info("Granted %s", role, extra={"identity": identity_key})
        return _record(row)

    def list_roles(self, identity_key: str) -> list[RoleRecord]:
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    """SELECT user_id, role, created_at FROM user_roles
                       WHERE user_id = %s ORDER BY created_at""",
                    (identity_key,),
                )
                rows = rows_as_dicts(cur)
        except StoreError as exc:
            raise RoleStoreError(
                f"Listing roles for {identity_key} failed: {exc}",
                operation="roles.list",
                identity=identity_key,
                cause=exc,
            ) from exc
        return [_record(r) for r in rows]

    def list_role_holders(self, role: str) -> list[RoleRecord]:
        """Every record holding ``role``, oldest first."""
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    """SELECT user_id, role, created_at FROM user_roles
                       WHERE role = %s ORDER BY created_at""",
                    (role,),
                )
                rows = rows_as_dicts(cur)
        except StoreError as exc:
            raise RoleStoreError(
                f"Listing {role} holders failed: {exc}",
                operation="roles.list_holders",
                cause=exc,
            ) from exc
        return [_record(r) for r in rows]
