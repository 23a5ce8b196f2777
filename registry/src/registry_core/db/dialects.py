"""Thin per-backend adapters for the metadata store.

Everything above this module talks to one SQLAlchemy interface; the
adapters only cover what genuinely differs between SQLite and PostgreSQL:
engine options, connection setup, conflict-tolerant inserts and the
classification of driver errors.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Table, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL
from sqlalchemy.exc import DBAPIError, IntegrityError

from ..errors import BackendError, ConflictError, NotFoundError, RegistryError

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


class DialectAdapter:
    name = "generic"

    def engine_options(self, url: URL) -> dict[str, Any]:
        return {"pool_pre_ping": True}

    def configure(self, engine: Engine) -> None:
        """Install connection-level hooks on a freshly created engine."""

    def insert(self, table: Table) -> Any:
        raise NotImplementedError

    def insert_ignore(self, table: Table, values: dict[str, Any], conflict: list[str]) -> Any:
        """INSERT that silently does nothing when ``conflict`` columns collide."""

        return self.insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict)

    def insert_or_touch(
        self,
        table: Table,
        values: dict[str, Any],
        conflict: list[str],
        touch: dict[str, Any],
    ) -> Any:
        """INSERT, or update only the ``touch`` columns of the existing row."""

        return self.insert(table).values(**values).on_conflict_do_update(
            index_elements=conflict,
            set_=touch,
        )

    def classify(self, exc: DBAPIError) -> RegistryError:
        if isinstance(exc, IntegrityError):
            return ConflictError(f"Constraint violation: {exc.orig}")
        return BackendError(f"Database error: {exc.orig}")


class SqliteAdapter(DialectAdapter):
    name = "sqlite"

    def engine_options(self, url: URL) -> dict[str, Any]:
        options = super().engine_options(url)
        options["connect_args"] = {"check_same_thread": False}
        return options

    def configure(self, engine: Engine) -> None:
        # pysqlite's implicit transactions break transactional DDL; take over BEGIN.
        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(connection: Any) -> None:
            connection.exec_driver_sql("BEGIN")

    def insert(self, table: Table) -> Any:
        return sqlite.insert(table)

    def classify(self, exc: DBAPIError) -> RegistryError:
        if isinstance(exc, IntegrityError):
            message = str(exc.orig)
            if "FOREIGN KEY" in message.upper():
                return NotFoundError(f"Referenced record does not exist: {message}")
            return ConflictError(f"Constraint violation: {message}")
        return BackendError(f"Database error: {exc.orig}")


class PostgresAdapter(DialectAdapter):
    name = "postgresql"

    def insert(self, table: Table) -> Any:
        return postgresql.insert(table)

    def classify(self, exc: DBAPIError) -> RegistryError:
        orig = exc.orig
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if code == FOREIGN_KEY_VIOLATION:
            return NotFoundError(f"Referenced record does not exist: {orig}")
        if code == UNIQUE_VIOLATION or isinstance(exc, IntegrityError):
            return ConflictError(f"Constraint violation: {orig}")
        return BackendError(f"Database error: {orig}")


def adapter_for(url: URL) -> DialectAdapter:
    backend = url.get_backend_name()
    if backend == "sqlite":
        return SqliteAdapter()
    if backend == "postgresql":
        return PostgresAdapter()
    raise BackendError(f"Unsupported database backend: {backend}")


__all__ = ["DialectAdapter", "SqliteAdapter", "PostgresAdapter", "adapter_for"]
