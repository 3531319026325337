"""Repository for space storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from whatidid.exceptions import ErrorCode, NotFoundError, ValidationError
from whatidid.models.db_models import DBPage, DBSpace
from whatidid.models.schema import (Space, ensure_timezone_aware, generate_id,
                                    utc_now, validate_slug)
from whatidid.storage.base import Repository

logger = logging.getLogger(__name__)


class SpaceRepository(Repository):
    """Repository for spaces.

    A space's slug is fixed at creation; only its name and description
    can change afterwards. A space can only be deleted once it owns no pages.
    """

    def create(self, slug: str, name: str, description: str = "") -> Space:
        """Create a new space.

        Raises:
            ValidationError: If the slug or name is malformed.
            ConstraintViolationError: If the slug is already taken.
        """
        try:
            validate_slug(slug)
        except ValueError as e:
            raise ValidationError(str(e), field="slug", value=slug) from None
        if not name or not name.strip():
            raise ValidationError("Space name cannot be empty", field="name")

        now = utc_now()
        space = Space(
            id=generate_id(),
            slug=slug,
            name=name.strip(),
            description=description or "",
            created_at=now,
            updated_at=now,
        )

        def work(session: Session) -> Space:
            session.add(DBSpace(
                id=space.id,
                slug=space.slug,
                name=space.name,
                description=space.description,
                created_at=space.created_at,
                updated_at=space.updated_at,
            ))
            return space

        created = self._write("create_space", work)
        logger.info(f"Created space: {slug}")
        return created

    def get(self, slug: str) -> Space:
        """Get a space by slug.

        Raises:
            NotFoundError: If no space has that slug.
        """
        def work(session: Session) -> Space:
            return self._db_to_model(self._require(session, slug))

        return self._read("get_space", work)

    def find(self, slug: str) -> Optional[Space]:
        """Get a space by slug, or None."""
        def work(session: Session) -> Optional[Space]:
            db_space = self._lookup(session, slug)
            return self._db_to_model(db_space) if db_space else None

        return self._read("find_space", work)

    def get_by_id(self, space_id: str) -> Space:
        def work(session: Session) -> Space:
            db_space = session.get(DBSpace, space_id)
            if db_space is None:
                raise NotFoundError("space", space_id)
            return self._db_to_model(db_space)

        return self._read("get_space", work)

    def list(self) -> List[Space]:
        """All spaces, newest first."""
        def work(session: Session) -> List[Space]:
            rows = session.scalars(
                select(DBSpace).order_by(DBSpace.created_at.desc(), DBSpace.id.desc())
            ).all()
            return [self._db_to_model(r) for r in rows]

        return self._read("list_spaces", work)

    def update(
        self,
        slug: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Space:
        """Change a space's display name and/or description."""
        if name is not None and not name.strip():
            raise ValidationError("Space name cannot be empty", field="name")

        def work(session: Session) -> Space:
            db_space = self._require(session, slug)
            if name is not None:
                db_space.name = name.strip()
            if description is not None:
                db_space.description = description
            db_space.updated_at = utc_now()
            session.flush()
            return self._db_to_model(db_space)

        updated = self._write("update_space", work)
        logger.info(f"Updated space: {slug}")
        return updated

    def delete(self, slug: str) -> None:
        """Delete an empty space.

        Raises:
            NotFoundError: If the space does not exist.
            ValidationError: With code SPACE_NOT_EMPTY if pages remain.
        """
        def work(session: Session) -> None:
            db_space = self._require(session, slug)
            page_count = self._count_pages(session, db_space.id)
            if page_count > 0:
                raise ValidationError(
                    f"Cannot delete space '{slug}': {page_count} page(s) still belong to it. "
                    "Delete or move them first.",
                    field="slug",
                    value=slug,
                    code=ErrorCode.SPACE_NOT_EMPTY
                )
            session.delete(db_space)

        self._write("delete_space", work)
        logger.info(f"Deleted space: {slug}")

    def count_pages(self, slug: str) -> int:
        def work(session: Session) -> int:
            return self._count_pages(session, self._require(session, slug).id)

        return self._read("count_pages", work)

    @staticmethod
    def _count_pages(session: Session, space_id: str) -> int:
        return session.scalar(
            select(func.count()).select_from(DBPage).where(DBPage.space_id == space_id)
        ) or 0

    @staticmethod
    def _lookup(session: Session, slug: str) -> Optional[DBSpace]:
        return session.scalar(select(DBSpace).where(DBSpace.slug == slug))

    def _require(self, session: Session, slug: str) -> DBSpace:
        db_space = self._lookup(session, slug)
        if db_space is None:
            raise NotFoundError("space", slug)
        return db_space

    @staticmethod
    def _db_to_model(db_space: DBSpace) -> Space:
        created_at = ensure_timezone_aware(db_space.created_at)
        return Space(
            id=db_space.id,
            slug=db_space.slug,
            name=db_space.name,
            description=db_space.description or "",
            created_at=created_at,
            updated_at=ensure_timezone_aware(db_space.updated_at or created_at),
        )
