"""Full-text and metadata search over pages."""

import logging
import re
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from whatidid.config import KnowledgeBaseConfig
from whatidid.exceptions import NotFoundError
from whatidid.models.schema import Page, SearchResult
from whatidid.observability import timed_operation
from whatidid.storage.base import Repository
from whatidid.storage.filters import SearchFilters, compose
from whatidid.storage.fts_index import FTS_TABLE, normalize_query, quote_phrase
from whatidid.storage.page_repository import PageRepository

logger = logging.getLogger(__name__)

ELLIPSIS = "..."


def make_excerpt(
    content: str,
    query: Optional[str],
    radius: int = 40,
    lead_length: int = 100,
) -> str:
    """Cut a plain-text window out of ``content`` around the query.

    Looks for the whole phrase first, then for each of its words, matching
    case-insensitively. Without a query, or when nothing matches (the
    index tokenizer is looser than a substring search), the excerpt is
    the leading ``lead_length`` characters.
    """
    if not content:
        return ""

    if query:
        needles = [query] + [w for w in query.split() if w != query]
        for needle in needles:
            match = re.search(re.escape(needle), content, re.IGNORECASE)
            if match is None:
                continue
            start = max(0, match.start() - radius)
            end = min(len(content), match.end() + radius)
            excerpt = content[start:end]
            if start > 0:
                excerpt = ELLIPSIS + excerpt
            if end < len(content):
                excerpt = excerpt + ELLIPSIS
            return excerpt

    if len(content) > lead_length:
        return content[:lead_length] + ELLIPSIS
    return content


class SearchEngine(Repository):
    """Ranked full-text search combined with AND-ed metadata filters.

    The user's query text is always matched as one literal phrase. Ranking
    comes from FTS5's bm25 (lower is better); equal ranks, and all results
    of a metadata-only search, are ordered most recently updated first.
    """

    def __init__(
        self,
        engine: Engine,
        pages: Optional[PageRepository] = None,
        settings: Optional[KnowledgeBaseConfig] = None,
    ):
        super().__init__(engine, settings)
        self.pages = pages or PageRepository(engine, self.settings)

    def search(
        self,
        query: Optional[str] = None,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
    ) -> List[SearchResult]:
        """Search pages.

        Args:
            query: Text to find in titles and content. Blank means none.
            filters: Metadata filters; all supplied filters must hold.
            limit: Maximum number of results.

        Raises:
            NotFoundError: If ``filters.space`` names no space.
            ValidationError: On an unknown page type or malformed section key.
        """
        query = normalize_query(query)
        filters = filters or SearchFilters()
        where_sql, params = compose(filters.predicates())

        if query is not None:
            sql = (
                f"SELECT p.id, bm25({FTS_TABLE}) AS score "
                f"FROM {FTS_TABLE} JOIN pages p ON p.rowid = {FTS_TABLE}.rowid "
                f"WHERE {FTS_TABLE} MATCH :match AND {where_sql} "
                "ORDER BY score, p.updated_at DESC, p.id DESC"
            )
            params["match"] = quote_phrase(query)
        else:
            sql = (
                f"SELECT p.id, NULL AS score FROM pages p WHERE {where_sql} "
                "ORDER BY p.updated_at DESC, p.id DESC"
            )
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(limit)

        def work(session: Session):
            if filters.space and session.execute(
                text("SELECT 1 FROM spaces WHERE slug = :slug"), {"slug": filters.space}
            ).first() is None:
                raise NotFoundError("space", filters.space)
            return session.execute(text(sql), params).all()

        with timed_operation("search", query=query, filters=len(filters.predicates())) as op:
            rows = self._read("search", work)
            pages = self.pages.get_many([row.id for row in rows])
            results = [
                SearchResult(
                    page=pages[row.id],
                    rank=row.score,
                    excerpt=self._excerpt_for(pages[row.id], query, filters.section_key),
                )
                for row in rows
                if row.id in pages
            ]
            op["result_count"] = len(results)

        logger.debug(f"Search {query!r} returned {len(results)} result(s)")
        return results

    def _excerpt_for(self, page: Page, query: Optional[str], section_key: Optional[str]) -> str:
        source = page.content
        if section_key and page.sections and page.sections.get(section_key):
            source = page.sections[section_key]
        return make_excerpt(
            source,
            query,
            radius=self.settings.excerpt_radius,
            lead_length=self.settings.excerpt_lead_length,
        )
