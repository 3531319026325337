"""Entry point tying the knowledge base components to one database file."""
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from whatidid.config import KnowledgeBaseConfig, config
from whatidid.exceptions import ErrorCode, MigrationError, StorageError
from whatidid.migrations import SchemaStore
from whatidid.models.db_models import init_db
from whatidid.services.search_service import SearchEngine
from whatidid.storage.fts_index import FtsIndex
from whatidid.storage.label_repository import LabelRepository
from whatidid.storage.link_repository import LinkRepository
from whatidid.storage.page_repository import PageRepository
from whatidid.storage.space_repository import SpaceRepository

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """An open knowledge base.

    Opening runs every pending migration before anything else can touch
    the file; if that fails the engine is disposed and MigrationError
    propagates. All repositories share the one engine.

    Usage:
        with KnowledgeBase.open() as kb:
            kb.spaces.create("proj", "Project")
    """

    def __init__(
        self,
        database_path: Optional[Union[str, Path]] = None,
        settings: Optional[KnowledgeBaseConfig] = None,
    ):
        self.settings = settings or config
        self.database_path = Path(database_path or self.settings.database_path).expanduser()
        self.engine = init_db(self.database_path, self.settings)

        self.schema = SchemaStore(self.engine)
        try:
            applied = self.schema.apply_pending()
        except MigrationError:
            logger.error(f"Refusing to open {self.database_path}: schema migration failed")
            self.engine.dispose()
            raise
        except DBAPIError as e:
            self.engine.dispose()
            raise StorageError(
                "Could not open knowledge base",
                operation="open",
                path=str(self.database_path),
                original_error=e
            ) from e
        if applied:
            logger.info(f"Applied {applied} migration(s) to {self.database_path}")

        self.spaces = SpaceRepository(self.engine, self.settings)
        self.pages = PageRepository(self.engine, self.settings)
        self.labels = LabelRepository(self.engine, self.settings)
        self.links = LinkRepository(self.engine, self.settings)
        self.search_engine = SearchEngine(self.engine, self.pages, self.settings)
        self.fts = FtsIndex(self.engine)

    @classmethod
    def open(
        cls,
        database_path: Optional[Union[str, Path]] = None,
        settings: Optional[KnowledgeBaseConfig] = None,
    ) -> "KnowledgeBase":
        return cls(database_path, settings)

    def search(self, query=None, filters=None, limit=None):
        """Shortcut for ``self.search_engine.search``."""
        return self.search_engine.search(query, filters, limit)

    def check_health(self) -> Dict[str, Any]:
        """Run SQLite's integrity check and the FTS index check.

        Returns:
            Dict with ``healthy``, ``sqlite_ok``, ``fts_ok``, ``schema_version``
            and any ``issues`` found.
        """
        issues = []
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text("PRAGMA integrity_check")).scalar()
        except DBAPIError as e:
            raise StorageError(
                "Integrity check could not run",
                operation="integrity_check",
                code=ErrorCode.DATABASE_CORRUPTED,
                original_error=e
            ) from e
        sqlite_ok = result == "ok"
        if not sqlite_ok:
            issues.append(f"SQLite integrity check: {result}")

        fts_ok = self.fts.integrity_check()
        if not fts_ok:
            issues.append("FTS index out of sync with pages; run rebuild")

        return {
            "healthy": sqlite_ok and fts_ok,
            "sqlite_ok": sqlite_ok,
            "fts_ok": fts_ok,
            "schema_version": self.schema.current_version(),
            "issues": issues,
        }

    def close(self) -> None:
        """Release every pooled connection."""
        self.engine.dispose()
        logger.debug(f"Closed knowledge base {self.database_path}")

    def __enter__(self) -> "KnowledgeBase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_knowledge_base(
    database_path: Optional[Union[str, Path]] = None,
    settings: Optional[KnowledgeBaseConfig] = None,
) -> KnowledgeBase:
    """Open (creating and migrating if needed) the knowledge base file."""
    return KnowledgeBase.open(database_path, settings)
