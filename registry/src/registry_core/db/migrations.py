"""Forward-only schema migration runner.

Migration modules live in ``registry_core.migrations.versions``. Each module
declares a ``revision`` identifier and an ``upgrade()`` function written
against ``alembic.op``. Pending migrations run in ascending lexical order of
their identifiers; each one runs in its own transaction together with the
row that records it in ``schema_migrations``, so a failure leaves neither
schema changes nor a tracking row behind.
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from dataclasses import dataclass
from datetime import datetime, timezone
from types import ModuleType
from typing import Callable, Iterable, Optional

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Column, MetaData, String, Table, insert, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from ..errors import BackendError
from .session import Database
from .types import UTCDateTime

LOGGER = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "registry_core.migrations.versions"

_tracking_metadata = MetaData()

schema_migrations = Table(
    "schema_migrations",
    _tracking_metadata,
    Column("version", String(255), primary_key=True),
    Column("applied_at", UTCDateTime(), nullable=False),
)


@dataclass(frozen=True)
class Migration:
    identifier: str
    upgrade: Callable[[], None]
    description: str = ""


def _load_migration(module: ModuleType) -> Migration:
    identifier = getattr(module, "revision", None)
    upgrade = getattr(module, "upgrade", None)
    if not identifier or not callable(upgrade):
        raise BackendError(f"Migration module {module.__name__} lacks revision/upgrade")
    description = (module.__doc__ or "").strip().splitlines()[0] if module.__doc__ else ""
    return Migration(identifier=str(identifier), upgrade=upgrade, description=description)


def discover_migrations(package: str = MIGRATIONS_PACKAGE) -> list[Migration]:
    """Import every migration module in ``package`` sorted by identifier."""

    root = importlib.import_module(package)
    migrations = [
        _load_migration(importlib.import_module(f"{package}.{info.name}"))
        for info in pkgutil.iter_modules(root.__path__)
        if not info.ispkg and not info.name.startswith("_")
    ]
    migrations.sort(key=lambda item: item.identifier)
    identifiers = [item.identifier for item in migrations]
    if len(identifiers) != len(set(identifiers)):
        raise BackendError("Duplicate migration identifiers detected")
    return migrations


class MigrationRunner:
    def __init__(
        self,
        database: Database,
        migrations: Optional[Iterable[Migration]] = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._database = database
        self._migrations = sorted(
            migrations if migrations is not None else discover_migrations(),
            key=lambda item: item.identifier,
        )
        self._clock = clock
        self._logger = logger or LOGGER

    def _ensure_tracking_table(self) -> None:
        with self._database.engine.begin() as connection:
            _tracking_metadata.create_all(connection, checkfirst=True)

    def applied(self) -> set[str]:
        self._ensure_tracking_table()
        with self._database.engine.connect() as connection:
            rows = connection.execute(select(schema_migrations.c.version))
            return {row[0] for row in rows}

    def pending(self) -> list[Migration]:
        done = self.applied()
        return [item for item in self._migrations if item.identifier not in done]

    def _apply(self, connection: Connection, migration: Migration) -> None:
        context = MigrationContext.configure(connection)
        with Operations.context(context):
            migration.upgrade()
        connection.execute(
            insert(schema_migrations).values(version=migration.identifier, applied_at=self._clock())
        )

    def run(self) -> list[str]:
        """Apply all pending migrations; return the identifiers applied."""

        applied: list[str] = []
        for migration in self.pending():
            try:
                with self._database.engine.begin() as connection:
                    self._apply(connection, migration)
            except SQLAlchemyError as exc:
                self._logger.error("Migration %s failed: %s", migration.identifier, exc)
                raise BackendError(f"Migration {migration.identifier} failed: {exc}") from exc
            self._logger.info("Applied migration %s", migration.identifier)
            applied.append(migration.identifier)
        return applied


def upgrade_database(database: Database) -> list[str]:
    """Apply pending migrations for ``database``."""

    return MigrationRunner(database).run()


__all__ = [
    "Migration",
    "MigrationRunner",
    "discover_migrations",
    "schema_migrations",
    "upgrade_database",
]
