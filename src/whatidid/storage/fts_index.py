"""FTS5 full-text index over page titles and content.

The index is an external-content table maintained by triggers on
``pages``; nothing here writes individual entries. This module owns the
query quoting used by search and the maintenance commands (rebuild and
integrity check) for a damaged index.
"""
import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DatabaseError as SQLAlchemyDatabaseError

from whatidid.models.db_models import write_engine

logger = logging.getLogger(__name__)

FTS_TABLE = "pages_fts"


def quote_phrase(query: str) -> str:
    """Turn arbitrary user text into a single FTS5 phrase literal.

    Column filters (``title:x``), operators (``AND``, ``NEAR``), prefix
    stars and leading hyphens all lose their meaning inside a string.
    Embedded double quotes are doubled so the phrase cannot be closed early.
    """
    return '"' + query.replace('"', '""') + '"'


def normalize_query(query: Optional[str]) -> Optional[str]:
    """Collapse whitespace; blank text means no query at all."""
    if query is None:
        return None
    collapsed = " ".join(query.split())
    return collapsed or None


class FtsIndex:
    """Maintenance operations on the ``pages_fts`` index.

    Args:
        engine: SQLAlchemy engine used for database access.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def rebuild(self) -> int:
        """Repopulate the index from the pages table.

        Returns:
            Number of pages indexed.
        """
        with write_engine(self.engine).begin() as conn:
            conn.execute(text(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES('rebuild')"))
            count = conn.execute(text("SELECT COUNT(*) FROM pages")).scalar() or 0
        logger.info(f"Rebuilt FTS index: {count} pages indexed")
        return count

    def integrity_check(self) -> bool:
        """Compare the index against the pages table.

        Returns:
            True if the index is consistent, False if it needs a rebuild.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(text(
                    f"INSERT INTO {FTS_TABLE}({FTS_TABLE}, rank) VALUES('integrity-check', 1)"
                ))
            return True
        except SQLAlchemyDatabaseError as e:
            logger.warning(f"FTS integrity check failed: {e}")
            return False

