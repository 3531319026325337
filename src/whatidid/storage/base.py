"""Shared plumbing for the knowledge base repositories.

Every repository receives the engine explicitly. Reads run in a plain
session; writes run through ``_write`` in a BEGIN IMMEDIATE transaction
that commits on success, rolls back on any error, and is retried a
bounded number of times when SQLite reports lock contention.
"""
import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from whatidid.config import KnowledgeBaseConfig, config
from whatidid.exceptions import (ConstraintViolationError, ErrorCode,
                                 StorageError)
from whatidid.models.db_models import get_session_factory

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOCK_MARKERS = ("database is locked", "database table is locked", "database is busy")


def is_lock_error(error: Exception) -> bool:
    """Whether an exception is SQLite reporting a held lock."""
    message = str(getattr(error, "orig", error)).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


class Repository:
    """Base class wiring sessions, retries and error translation.

    Args:
        engine: Engine returned by ``init_db``, already migrated.
        settings: Retry settings. Defaults to the global config.
    """

    def __init__(self, engine: Engine, settings: Optional[KnowledgeBaseConfig] = None):
        self.engine = engine
        self.settings = settings or config
        self.session_factory = get_session_factory(engine)
        self.write_session_factory = get_session_factory(engine, immediate=True)

    def _read(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in a read-only session."""
        try:
            with self.session_factory() as session:
                return work(session)
        except DBAPIError as e:
            raise self._storage_error(operation, e) from e

    def _write(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in one write transaction, retrying on lock contention.

        ``work`` may raise any KnowledgeBaseError; the transaction is rolled
        back and the error propagates unchanged.
        """
        attempts = self.settings.write_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                with self.write_session_factory() as session:
                    with session.begin():
                        return work(session)
            except IntegrityError as e:
                raise ConstraintViolationError(
                    f"{operation} violates a storage constraint: {e.orig}",
                    operation=operation,
                    original_error=e
                ) from e
            except OperationalError as e:
                if not is_lock_error(e):
                    raise self._storage_error(operation, e) from e
                if attempt >= attempts:
                    logger.error(
                        f"{operation}: database still locked after {attempts} attempts"
                    )
                    raise StorageError(
                        f"Database is locked; {operation} gave up after {attempts} attempts",
                        operation=operation,
                        code=ErrorCode.STORAGE_LOCKED,
                        original_error=e
                    ) from e
                wait = self.settings.write_retry_delay * attempt
                logger.warning(
                    f"{operation}: database locked, retrying in {wait:.2f}s "
                    f"(attempt {attempt}/{attempts})"
                )
                time.sleep(wait)
            except DBAPIError as e:
                raise self._storage_error(operation, e) from e
        raise StorageError(f"{operation} did not run", operation=operation)

    @staticmethod
    def _storage_error(operation: str, error: DBAPIError) -> StorageError:
        if is_lock_error(error):
            code = ErrorCode.STORAGE_LOCKED
        elif "malformed" in str(error.orig).lower() or "not a database" in str(error.orig).lower():
            code = ErrorCode.DATABASE_CORRUPTED
        else:
            code = ErrorCode.STORAGE_FAILED
        logger.error(f"{operation} failed: {error.orig}")
        return StorageError(
            f"{operation} failed: {error.orig}",
            operation=operation,
            code=code,
            original_error=error
        )
