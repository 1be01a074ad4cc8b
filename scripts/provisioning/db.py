"""Database helpers: connection pool, transactions, driver error translation."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator

import psycopg2
import psycopg2.errorcodes
import psycopg2.errors
import psycopg2.pool

from scripts.provisioning.config import DatabaseConfig
from scripts.provisioning.errors import DuplicateRow, RelationMissing, StoreError

logger = logging.getLogger("provisioning.db")


def translate_error(exc: psycopg2.Error) -> StoreError:
    """Map a driver error onto the store error taxonomy by SQLSTATE."""
    code = getattr(exc, "pgcode", None)
    message = (getattr(exc, "pgerror", None) or str(exc)).strip()
    if isinstance(exc, psycopg2.errors.UndefinedTable) or code == psycopg2.errorcodes.UNDEFINED_TABLE:
        return RelationMissing(message, pgcode=psycopg2.errorcodes.UNDEFINED_TABLE)
    if isinstance(exc, psycopg2.errors.UniqueViolation) or code == psycopg2.errorcodes.UNIQUE_VIOLATION:
        return DuplicateRow(message, pgcode=psycopg2.errorcodes.UNIQUE_VIOLATION)
    return StoreError(message, pgcode=code)


def rows_as_dicts(cur) -> list[dict[str, Any]]:
    cols = [d[0] for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]


class Database:
    """Thin wrapper around a ThreadedConnectionPool.

    Callers never see psycopg2 exceptions: ``transaction`` rolls back and
    re-raises them as ``StoreError`` subclasses.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        # PoolError (pool exhausted) subclasses psycopg2.Error
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as exc:
            raise translate_error(exc) from exc
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """Yield a cursor inside an auto-commit/rollback transaction."""
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except psycopg2.Error as exc:
                conn.rollback()
                raise translate_error(exc) from exc
            except Exception:
                conn.rollback()
                raise
