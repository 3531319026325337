"""Schema versioning for the knowledge base file.

Each module under ``whatidid.migrations.versions`` exposes a ``version``
number and an ``upgrade(op)`` function, where ``op`` is an alembic
``Operations`` object bound to the migration's connection. ``SchemaStore``
tracks the applied version in ``schema_meta`` and runs every pending
migration in its own BEGIN IMMEDIATE transaction together with the
version bump, so a failed migration leaves nothing behind.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from whatidid.exceptions import ErrorCode, MigrationError
from whatidid.migrations.versions import (v001_initial, v002_sections,
                                          v003_timestamps, v004_filter_indexes)
from whatidid.models.db_models import write_engine
from whatidid.models.schema import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """A single schema step from ``version - 1`` to ``version``."""

    version: int
    name: str
    upgrade: Callable[[Operations], None]


def _from_module(module) -> Migration:
    return Migration(
        version=module.version,
        name=module.__name__.rsplit(".", 1)[-1],
        upgrade=module.upgrade,
    )


MIGRATIONS: List[Migration] = [
    _from_module(m)
    for m in (v001_initial, v002_sections, v003_timestamps, v004_filter_indexes)
]


class SchemaStore:
    """Brings a database file up to the newest known schema version.

    Args:
        engine: Engine returned by ``init_db``.
        migrations: Ordered migrations to apply. Defaults to the shipped set.
    """

    def __init__(self, engine: Engine, migrations: Optional[Sequence[Migration]] = None):
        self.engine = engine
        self.migrations = sorted(
            MIGRATIONS if migrations is None else migrations,
            key=lambda m: m.version,
        )
        expected = list(range(1, len(self.migrations) + 1))
        if [m.version for m in self.migrations] != expected:
            raise ValueError(
                "Migration versions must be contiguous starting at 1, got "
                f"{[m.version for m in self.migrations]}"
            )

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    def current_version(self) -> int:
        """Return the tracked schema version; 0 for a fresh file."""
        with self.engine.connect() as conn:
            return self._read_version(conn)

    def pending_versions(self) -> List[int]:
        current = self.current_version()
        return [m.version for m in self.migrations if m.version > current]

    def apply_pending(self) -> int:
        """Apply every unapplied migration in ascending order.

        Returns:
            Number of migrations this call applied.

        Raises:
            MigrationError: If a migration fails (its transaction is rolled
                back) or the file was written by a newer schema.
        """
        current = self.current_version()
        if current > self.latest_version:
            raise MigrationError(
                f"Database schema version {current} is newer than this build "
                f"supports ({self.latest_version})",
                version=current,
                code=ErrorCode.SCHEMA_TOO_NEW
            )

        applied = 0
        for migration in self.migrations:
            if migration.version <= current:
                continue
            if self._apply_one(migration):
                applied += 1
            current = migration.version

        if applied:
            logger.info(f"Schema migrated to version {current} ({applied} applied)")
        return applied

    def _apply_one(self, migration: Migration) -> bool:
        try:
            with write_engine(self.engine).connect() as conn:
                with conn.begin():
                    # Another process may have migrated while we waited for the lock
                    found = self._read_version(conn)
                    if found >= migration.version:
                        logger.debug(
                            f"Migration {migration.version} already applied elsewhere"
                        )
                        return False
                    logger.info(f"Applying migration {migration.version} ({migration.name})")
                    op = Operations(MigrationContext.configure(conn))
                    migration.upgrade(op)
                    self._write_version(conn, migration.version)
            return True
        except MigrationError:
            raise
        except Exception as e:
            logger.error(f"Migration {migration.version} ({migration.name}) failed: {e}")
            raise MigrationError(
                f"Migration {migration.version} ({migration.name}) failed; "
                "schema left at the previous version",
                version=migration.version,
                original_error=e
            ) from e

    @staticmethod
    def _read_version(conn: Connection) -> int:
        has_meta = conn.execute(text(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_meta'"
        )).first()
        if not has_meta:
            return 0
        value = conn.execute(text("SELECT MAX(version) FROM schema_meta")).scalar()
        return int(value or 0)

    @staticmethod
    def _write_version(conn: Connection, version: int) -> None:
        params = {"version": version, "updated_at": utc_now().isoformat()}
        result = conn.execute(
            text("UPDATE schema_meta SET version = :version, updated_at = :updated_at"),
            params,
        )
        if result.rowcount == 0:
            conn.execute(
                text("INSERT INTO schema_meta (version, updated_at) VALUES (:version, :updated_at)"),
                params,
            )
