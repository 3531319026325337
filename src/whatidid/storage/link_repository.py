"""Repository for links between pages."""
import logging
from typing import List

from sqlalchemy import delete, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from whatidid.exceptions import ErrorCode, NotFoundError, ValidationError
from whatidid.models.db_models import DBLink, DBPage
from whatidid.models.schema import (Link, LinkRelation, ensure_timezone_aware,
                                    parse_link_relation, utc_now)
from whatidid.storage.base import Repository

logger = logging.getLogger(__name__)

DIRECTIONS = ("outgoing", "incoming", "both")


class LinkRepository(Repository):
    """Directed, typed links; at most one per (source, target) pair."""

    def create(self, source_id: str, target_id: str, relation=LinkRelation.RELATES_TO) -> Link:
        """Link two pages, replacing the relation of an existing link.

        Re-creating an identical link changes nothing, not even updated_at.

        Raises:
            NotFoundError: If either page does not exist.
            ValidationError: On a self-link or unknown relation.
        """
        relation = parse_link_relation(relation)
        if source_id == target_id:
            raise ValidationError(
                "A page cannot link to itself",
                field="target_id",
                value=target_id,
                code=ErrorCode.LINK_SELF_REFERENCE
            )

        def work(session: Session) -> Link:
            for page_id in (source_id, target_id):
                if session.get(DBPage, page_id) is None:
                    raise NotFoundError("page", page_id)

            now = utc_now()
            stmt = sqlite_insert(DBLink).values(
                source_id=source_id,
                target_id=target_id,
                relation=relation.value,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[DBLink.source_id, DBLink.target_id],
                set_={"relation": stmt.excluded.relation, "updated_at": stmt.excluded.updated_at},
                where=DBLink.relation != stmt.excluded.relation,
            )
            session.execute(stmt)
            return self._db_to_model(self._require(session, source_id, target_id))

        link = self._write("create_link", work)
        logger.info(f"Linked {source_id} -{link.relation.value}-> {target_id}")
        return link

    def get(self, source_id: str, target_id: str) -> Link:
        def work(session: Session) -> Link:
            return self._db_to_model(self._require(session, source_id, target_id))

        return self._read("get_link", work)

    def list_for_page(self, page_id: str, direction: str = "both") -> List[Link]:
        """Links touching a page, oldest first.

        Args:
            page_id: The page whose links to return.
            direction: "outgoing", "incoming" or "both".
        """
        if direction not in DIRECTIONS:
            raise ValidationError(
                f"Invalid direction '{direction}'. Expected one of: {', '.join(DIRECTIONS)}",
                field="direction",
                value=direction
            )

        def work(session: Session) -> List[Link]:
            if session.get(DBPage, page_id) is None:
                raise NotFoundError("page", page_id)
            if direction == "outgoing":
                condition = DBLink.source_id == page_id
            elif direction == "incoming":
                condition = DBLink.target_id == page_id
            else:
                condition = or_(DBLink.source_id == page_id, DBLink.target_id == page_id)
            rows = session.scalars(
                select(DBLink)
                .where(condition)
                .order_by(DBLink.created_at, DBLink.source_id, DBLink.target_id)
            ).all()
            return [self._db_to_model(r) for r in rows]

        return self._read("list_links", work)

    def delete(self, source_id: str, target_id: str) -> None:
        """Remove a link.

        Raises:
            NotFoundError: If no such link exists.
        """
        def work(session: Session) -> None:
            result = session.execute(
                delete(DBLink).where(
                    DBLink.source_id == source_id, DBLink.target_id == target_id
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("link", f"{source_id}->{target_id}")

        self._write("delete_link", work)
        logger.info(f"Unlinked {source_id} -> {target_id}")

    @staticmethod
    def _require(session: Session, source_id: str, target_id: str) -> DBLink:
        db_link = session.get(DBLink, (source_id, target_id))
        if db_link is None:
            raise NotFoundError("link", f"{source_id}->{target_id}")
        return db_link

    @staticmethod
    def _db_to_model(db_link: DBLink) -> Link:
        created_at = ensure_timezone_aware(db_link.created_at)
        return Link(
            source_id=db_link.source_id,
            target_id=db_link.target_id,
            relation=LinkRelation(db_link.relation),
            created_at=created_at,
            updated_at=ensure_timezone_aware(db_link.updated_at or created_at),
        )
