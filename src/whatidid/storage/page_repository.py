"""Repository for page storage, optimistic concurrency and hierarchy."""
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import case, exists, select, text, update
from sqlalchemy.orm import Session, selectinload

from whatidid.exceptions import (ErrorCode, NotFoundError, ValidationError,
                                 VersionConflictError)
from whatidid.models import sections as section_registry
from whatidid.models.db_models import DBPage, DBSpace
from whatidid.models.schema import (Identity, Page, PageNode, PageType,
                                    ensure_timezone_aware, generate_id,
                                    parse_page_type, utc_now)
from whatidid.observability import traced
from whatidid.storage.base import Repository
from whatidid.storage.filters import SearchFilters, compose
from whatidid.storage.label_repository import LabelRepository

logger = logging.getLogger(__name__)


def _check_content_source(body: Optional[str], sections: Optional[Mapping[str, str]]) -> None:
    if body is not None and sections is not None:
        raise ValidationError(
            "Supply either a body or sections, not both",
            field="body",
            code=ErrorCode.CONTENT_SOURCE_CONFLICT
        )


def _clean_title(title: str) -> str:
    if title is None or not title.strip():
        raise ValidationError("Title cannot be empty", field="title")
    return title.strip()


class PageRepository(Repository):
    """Repository for pages.

    Content is either caller-supplied freeform text or the rendering of
    the page's sections; ``sections`` is NULL for freeform pages. Every
    update bumps ``version`` by one inside a single UPDATE statement that
    also checks the caller's expected version, so two writers holding the
    same version can never both succeed.
    """

    @traced("create_page")
    def create(
        self,
        space_slug: str,
        title: str,
        page_type,
        identity: Identity,
        body: Optional[str] = None,
        sections: Optional[Mapping[str, str]] = None,
        parent_id: Optional[str] = None,
        labels: Iterable[str] = (),
    ) -> Page:
        """Create a page in a space.

        Exactly one of ``body`` and ``sections`` must be given. Labels are
        written in the same transaction as the page row.

        Raises:
            NotFoundError: If the space or the parent page does not exist.
            ValidationError: On a bad type, title, sections or content source.
        """
        page_type = parse_page_type(page_type)
        title = _clean_title(title)
        _check_content_source(body, sections)
        if body is None and sections is None:
            raise ValidationError(
                "Supply either a body or sections",
                field="body",
                code=ErrorCode.CONTENT_SOURCE_CONFLICT
            )

        stored_sections = None
        if sections is not None:
            stored_sections = section_registry.validate(page_type, sections)
            content = section_registry.render(page_type, stored_sections)
        else:
            content = body

        page_id = generate_id()
        now = utc_now()

        def work(session: Session) -> Page:
            db_space = session.scalar(select(DBSpace).where(DBSpace.slug == space_slug))
            if db_space is None:
                raise NotFoundError("space", space_slug)
            if parent_id is not None:
                parent = session.get(DBPage, parent_id)
                if parent is None:
                    raise NotFoundError(
                        "page", parent_id, message=f"Parent page '{parent_id}' not found"
                    )
                if parent.space_id != db_space.id:
                    raise ValidationError(
                        "Parent page belongs to a different space",
                        field="parent_id",
                        value=parent_id
                    )

            session.add(DBPage(
                id=page_id,
                space_id=db_space.id,
                parent_id=parent_id,
                title=title,
                page_type=page_type.value,
                content=content,
                sections=stored_sections,
                created_by_user=identity.user,
                created_by_agent=identity.agent,
                created_at=now,
                updated_at=now,
                version=1,
            ))
            session.flush()
            stored_labels = LabelRepository.replace_labels(session, page_id, labels)

            return Page(
                id=page_id,
                space_id=db_space.id,
                parent_id=parent_id,
                title=title,
                page_type=page_type,
                content=content,
                sections=stored_sections,
                created_by_user=identity.user,
                created_by_agent=identity.agent,
                created_at=now,
                updated_at=now,
                version=1,
                labels=stored_labels,
            )

        page = self._write("create_page", work)
        logger.info(f"Created page {page.id} ({page_type.value}) in space {space_slug}")
        return page

    def get(self, page_id: str) -> Page:
        """Get a page by ID.

        Raises:
            NotFoundError: If the page does not exist.
        """
        def work(session: Session) -> Page:
            return self._db_page_to_model(self._require(session, page_id))

        return self._read("get_page", work)

    def get_many(self, page_ids: Sequence[str]) -> Dict[str, Page]:
        """Batch-load pages; missing IDs are simply absent from the result."""
        if not page_ids:
            return {}

        def work(session: Session) -> Dict[str, Page]:
            rows = session.scalars(
                select(DBPage)
                .options(selectinload(DBPage.labels))
                .where(DBPage.id.in_(list(page_ids)))
            ).all()
            return {row.id: self._db_page_to_model(row) for row in rows}

        return self._read("get_pages", work)

    @traced("list_pages")
    def list(self, filters: Optional[SearchFilters] = None, limit: Optional[int] = None) -> List[Page]:
        """Pages matching every supplied filter, newest first."""
        filters = filters or SearchFilters()
        where_sql, params = compose(filters.predicates())
        sql = (
            f"SELECT p.id FROM pages p WHERE {where_sql} "
            "ORDER BY p.created_at DESC, p.id DESC"
        )
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(limit)

        def work(session: Session) -> List[str]:
            if filters.space:
                self._require_space(session, filters.space)
            return list(session.scalars(text(sql), params))

        ids = self._read("list_pages", work)
        pages = self.get_many(ids)
        return [pages[i] for i in ids if i in pages]

    @traced("update_page")
    def update(
        self,
        page_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
        sections: Optional[Mapping[str, str]] = None,
        labels: Optional[Iterable[str]] = None,
        expected_version: Optional[int] = None,
    ) -> Page:
        """Update a page, optionally guarded by the version the caller read.

        A body turns the page freeform; sections replace the stored sections
        wholesale and re-render the content. The version is incremented even
        when only the title or labels change.

        Raises:
            NotFoundError: If the page does not exist.
            ValidationError: On both body and sections, or invalid sections.
            VersionConflictError: If ``expected_version`` is stale.
        """
        _check_content_source(body, sections)
        if title is not None:
            title = _clean_title(title)
        if labels is not None:
            labels = list(labels)

        def work(session: Session) -> Page:
            page_type = session.scalar(select(DBPage.page_type).where(DBPage.id == page_id))
            if page_type is None:
                raise NotFoundError("page", page_id)

            values = {"version": DBPage.version + 1, "updated_at": utc_now()}
            if title is not None:
                values["title"] = title
            if body is not None:
                values["content"] = body
                values["sections"] = None
            if sections is not None:
                validated = section_registry.validate(PageType(page_type), sections)
                values["sections"] = validated
                values["content"] = section_registry.render(PageType(page_type), validated)

            self._compare_and_set(session, page_id, expected_version, values)
            if labels is not None:
                LabelRepository.replace_labels(session, page_id, labels)
            return self._db_page_to_model(self._reload(session, page_id))

        page = self._write("update_page", work)
        logger.info(f"Updated page {page_id} to version {page.version}")
        return page

    @traced("append_page")
    def append(self, page_id: str, text_to_add: str, expected_version: Optional[int] = None) -> Page:
        """Append text to a freeform page, on a new line unless it is empty.

        Raises:
            NotFoundError: If the page does not exist.
            ValidationError: If the text is blank or the page has sections.
            VersionConflictError: If ``expected_version`` is stale.
        """
        if not text_to_add or not text_to_add.strip():
            raise ValidationError("Nothing to append", field="text")

        def work(session: Session) -> Page:
            row = session.execute(
                select(DBPage.sections).where(DBPage.id == page_id)
            ).first()
            if row is None:
                raise NotFoundError("page", page_id)
            if row.sections is not None:
                raise ValidationError(
                    "Cannot append to a page with structured sections; "
                    "update the sections instead",
                    field="sections",
                    code=ErrorCode.APPEND_TO_STRUCTURED
                )

            new_content = case(
                (DBPage.content == "", text_to_add),
                else_=DBPage.content + "\n" + text_to_add,
            )
            values = {
                "content": new_content,
                "version": DBPage.version + 1,
                "updated_at": utc_now(),
            }
            self._compare_and_set(
                session, page_id, expected_version, values, DBPage.sections.is_(None)
            )
            return self._db_page_to_model(self._reload(session, page_id))

        page = self._write("append_page", work)
        logger.info(f"Appended to page {page_id} (version {page.version})")
        return page

    def delete(self, page_id: str) -> None:
        """Delete a page; its labels and links go with it, children become top-level."""
        def work(session: Session) -> None:
            session.delete(self._require(session, page_id))

        self._write("delete_page", work)
        logger.info(f"Deleted page {page_id}")

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def children(self, page_id: str) -> List[Page]:
        """Direct children of a page, by title."""
        def work(session: Session) -> List[Page]:
            self._require(session, page_id)
            rows = session.scalars(
                select(DBPage)
                .options(selectinload(DBPage.labels))
                .where(DBPage.parent_id == page_id)
                .order_by(DBPage.title.collate("NOCASE"), DBPage.id)
            ).all()
            return [self._db_page_to_model(r) for r in rows]

        return self._read("list_children", work)

    def has_children(self, page_id: str) -> bool:
        def work(session: Session) -> bool:
            self._require(session, page_id)
            return bool(session.scalar(
                select(exists().where(DBPage.parent_id == page_id))
            ))

        return self._read("has_children", work)

    def top_level(self, space_slug: str) -> List[Page]:
        """Pages in a space without a parent, by title."""
        def work(session: Session) -> List[Page]:
            db_space = self._require_space(session, space_slug)
            rows = session.scalars(
                select(DBPage)
                .options(selectinload(DBPage.labels))
                .where(DBPage.space_id == db_space.id, DBPage.parent_id.is_(None))
                .order_by(DBPage.title.collate("NOCASE"), DBPage.id)
            ).all()
            return [self._db_page_to_model(r) for r in rows]

        return self._read("list_top_level", work)

    def ancestors(self, page_id: str) -> List[Page]:
        """Parent chain from the immediate parent up to the root.

        Parent references are not guaranteed acyclic; the walk stops at
        the first page it has already visited.
        """
        def work(session: Session) -> List[Page]:
            current = self._require(session, page_id)
            visited = {current.id}
            chain = []
            while current.parent_id is not None:
                if current.parent_id in visited:
                    logger.warning(f"Cycle in parent chain of page {page_id} at {current.parent_id}")
                    break
                parent = session.get(DBPage, current.parent_id)
                if parent is None:
                    break
                visited.add(parent.id)
                chain.append(self._db_page_to_model(parent))
                current = parent
            return chain

        return self._read("list_ancestors", work)

    def tree(self, space_slug: str) -> List[PageNode]:
        """The page forest of a space, rooted at its top-level pages."""
        def work(session: Session) -> List[Page]:
            db_space = self._require_space(session, space_slug)
            rows = session.scalars(
                select(DBPage)
                .options(selectinload(DBPage.labels))
                .where(DBPage.space_id == db_space.id)
                .order_by(DBPage.title.collate("NOCASE"), DBPage.id)
            ).all()
            return [self._db_page_to_model(r) for r in rows]

        ordered = self._read("page_tree", work)
        pages = {p.id: p for p in ordered}
        children: Dict[Optional[str], List[str]] = {}
        for page in ordered:
            parent = page.parent_id if page.parent_id in pages else None
            children.setdefault(parent, []).append(page.id)

        visited = set()

        def build(page_id: str) -> PageNode:
            visited.add(page_id)
            node = PageNode(page=pages[page_id])
            for child_id in children.get(page_id, []):
                if child_id in visited:
                    logger.warning(f"Cycle in page tree of space {space_slug} at {child_id}")
                    continue
                node.children.append(build(child_id))
            return node

        roots = [build(pid) for pid in children.get(None, [])]
        unreachable = len(pages) - len(visited)
        if unreachable:
            logger.warning(
                f"{unreachable} page(s) in space {space_slug} are only reachable through a cycle"
            )
        return roots

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _compare_and_set(
        session: Session,
        page_id: str,
        expected_version: Optional[int],
        values: dict,
        *conditions,
    ) -> None:
        """Apply ``values`` in one UPDATE guarded by the expected version."""
        stmt = update(DBPage).where(DBPage.id == page_id, *conditions)
        if expected_version is not None:
            stmt = stmt.where(DBPage.version == expected_version)
        result = session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        actual = session.scalar(select(DBPage.version).where(DBPage.id == page_id))
        if actual is None:
            raise NotFoundError("page", page_id)
        if expected_version is not None and actual != expected_version:
            raise VersionConflictError(page_id, expected_version, actual)
        raise ValidationError(
            f"Page '{page_id}' changed shape during the update",
            field="sections",
            code=ErrorCode.APPEND_TO_STRUCTURED
        )

    @staticmethod
    def _reload(session: Session, page_id: str) -> DBPage:
        db_page = session.get(DBPage, page_id)
        session.refresh(db_page)
        session.expire(db_page, ["labels"])
        return db_page

    @staticmethod
    def _require(session: Session, page_id: str) -> DBPage:
        db_page = session.get(DBPage, page_id)
        if db_page is None:
            raise NotFoundError("page", page_id)
        return db_page

    @staticmethod
    def _require_space(session: Session, slug: str) -> DBSpace:
        db_space = session.scalar(select(DBSpace).where(DBSpace.slug == slug))
        if db_space is None:
            raise NotFoundError("space", slug)
        return db_space

    @staticmethod
    def _db_page_to_model(db_page: DBPage) -> Page:
        return Page(
            id=db_page.id,
            space_id=db_page.space_id,
            parent_id=db_page.parent_id,
            title=db_page.title,
            page_type=PageType(db_page.page_type),
            content=db_page.content or "",
            sections=dict(db_page.sections) if db_page.sections is not None else None,
            created_by_user=db_page.created_by_user,
            created_by_agent=db_page.created_by_agent,
            created_at=ensure_timezone_aware(db_page.created_at),
            updated_at=ensure_timezone_aware(db_page.updated_at),
            version=db_page.version,
            labels=[label.label for label in db_page.labels],
        )
