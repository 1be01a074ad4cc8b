"""Lazy, idempotent creation of prerequisite tables.

A bounded read checks for the table first; creation DDL is only issued
when that read reports the relation missing, since the DDL may need
privileges that should not be exercised on every run.
"""

from __future__ import annotations

import logging
from typing import Iterable

from psycopg2 import sql

from scripts.provisioning.db import Database
from scripts.provisioning.errors import RelationMissing, SchemaError, StoreError
from scripts.provisioning.models import EnsureOutcome, SchemaTable

logger = logging.getLogger("provisioning.schema_ensurer")


class SchemaEnsurer:
    def __init__(self, db: Database) -> None:
        self.db = db

    def ensure(self, table: SchemaTable) -> EnsureOutcome:
        """Guarantee ``table`` exists. Returns whether it had to be created."""
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    sql.SQL("SELECT 1 FROM {} LIMIT 1").format(sql.Identifier(table.name))
                )
            logger.debug("Table %s present", table.name, extra={"table": table.name})
            return EnsureOutcome(table=table.name, created=False)
        except RelationMissing:
            logger.info(
                "Table %s missing, creating (v%d)",
                table.name,
                table.version,
                extra={"table": table.name},
            )
        except StoreError as exc:
            raise SchemaError(
                f"Existence check of table {table.name} failed: {exc}",
                operation="schema.check",
                cause=exc,
            ) from exc

        try:
            with self.db.transaction() as cur:
                cur.execute(table.ddl)
        except StoreError as exc:
            raise SchemaError(
                f"Creating table {table.name} failed: {exc}",
                operation="schema.create",
                cause=exc,
            ) from exc

        logger.info("Created table %s", table.name, extra={"table": table.name})
        return EnsureOutcome(table=table.name, created=True)

    def ensure_all(self, tables: Iterable[SchemaTable]) -> list[EnsureOutcome]:
        return [self.ensure(table) for table in tables]
