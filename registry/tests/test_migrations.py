import pytest
import sqlalchemy as sa
from alembic import op

from registry_core.db.migrations import Migration, MigrationRunner, discover_migrations
from registry_core.db.session import Database
from registry_core.domain.models import ANONYMOUS_USER_ID
from registry_core.errors import BackendError


@pytest.fixture
def empty_database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'fresh.db'}", retry_attempts=1)
    yield db
    db.dispose()


def _tables(db):
    return set(sa.inspect(db.engine).get_table_names())


def test_discovered_migrations_are_ordered():
    identifiers = [item.identifier for item in discover_migrations()]
    assert identifiers == sorted(identifiers)
    assert identifiers[0] == "0001_core_schema"
    assert len(identifiers) == len(set(identifiers))


def test_fresh_database_gets_full_schema(empty_database):
    applied = MigrationRunner(empty_database).run()

    assert applied == [item.identifier for item in discover_migrations()]
    assert {
        "packages",
        "package_versions",
        "users",
        "auth_tokens",
        "upload_sessions",
        "admin_users",
        "user_sessions",
        "activity_log",
        "webhooks",
        "webhook_deliveries",
        "site_config",
        "schema_migrations",
    } <= _tables(empty_database)


def test_rerun_applies_nothing(empty_database):
    runner = MigrationRunner(empty_database)
    runner.run()

    assert MigrationRunner(empty_database).run() == []
    assert runner.pending() == []


def test_seed_rows_exist(empty_database):
    MigrationRunner(empty_database).run()
    with empty_database.engine.connect() as connection:
        anonymous = connection.execute(
            sa.text("SELECT email FROM users WHERE id = :id"), {"id": ANONYMOUS_USER_ID}
        ).scalar_one()
        settings = dict(connection.execute(sa.text("SELECT name, value FROM site_config")).all())

    assert anonymous
    assert settings["allow_registration"] == "true"
    assert settings["session_ttl_hours"] == "24"


def _create_scratch_then_fail():
    op.create_table("scratch", sa.Column("id", sa.Integer(), primary_key=True))
    op.execute("INSERT INTO table_that_does_not_exist (id) VALUES (1)")


def _create_extra():
    op.create_table("extra", sa.Column("id", sa.Integer(), primary_key=True))


def test_failed_migration_rolls_back_and_is_not_recorded(empty_database):
    migrations = discover_migrations() + [
        Migration(identifier="9000_broken", upgrade=_create_scratch_then_fail),
        Migration(identifier="9001_after", upgrade=_create_extra),
    ]
    runner = MigrationRunner(empty_database, migrations)

    with pytest.raises(BackendError):
        runner.run()

    assert "scratch" not in _tables(empty_database)
    assert "extra" not in _tables(empty_database)
    assert "9000_broken" not in runner.applied()
    assert "0007_site_config" in runner.applied()


def test_new_migration_applies_on_top(empty_database):
    MigrationRunner(empty_database).run()
    migrations = discover_migrations() + [Migration(identifier="9001_after", upgrade=_create_extra)]

    assert MigrationRunner(empty_database, migrations).run() == ["9001_after"]
    assert "extra" in _tables(empty_database)
