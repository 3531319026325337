"""Tests for opening, checking and closing a knowledge base."""
import json

from sqlalchemy import text

from whatidid.config import KnowledgeBaseConfig
from whatidid.services.knowledge_service import KnowledgeBase, open_knowledge_base


class TestOpen:
    """Tests for KnowledgeBase construction."""

    def test_creates_and_migrates_file(self, test_config):
        with open_knowledge_base(settings=test_config) as kb:
            assert test_config.database_path.exists()
            assert kb.schema.current_version() == kb.schema.latest_version

    def test_explicit_path(self, temp_db_dir):
        settings = KnowledgeBaseConfig(database_path=temp_db_dir / "unused.db")
        with KnowledgeBase(temp_db_dir / "sub" / "explicit.db", settings) as kb:
            kb.spaces.create("proj", "Project")
        assert (temp_db_dir / "sub" / "explicit.db").exists()
        assert not (temp_db_dir / "unused.db").exists()

    def test_reopen_keeps_data(self, test_config, identity):
        with KnowledgeBase(settings=test_config) as kb:
            kb.spaces.create("proj", "Project")
            page = kb.pages.create("proj", "Kept", "reference", identity, body="persisted")
        with KnowledgeBase(settings=test_config) as kb:
            assert kb.pages.get(page.id).content == "persisted"
            assert kb.schema.pending_versions() == []


class TestConnectionSettings:
    """Every pooled connection gets the same SQLite settings."""

    def test_pragmas(self, kb):
        with kb.engine.connect() as conn:
            assert conn.execute(text("PRAGMA journal_mode")).scalar().lower() == "wal"
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
            assert conn.execute(text("PRAGMA synchronous")).scalar() == 1
            assert conn.execute(text("PRAGMA busy_timeout")).scalar() == 5000


class TestHealth:
    """Tests for check_health() and index maintenance."""

    def test_healthy(self, kb, make_page):
        make_page()
        health = kb.check_health()
        assert health["healthy"] is True
        assert health["sqlite_ok"] is True
        assert health["fts_ok"] is True
        assert health["issues"] == []
        assert health["schema_version"] == 4

    def test_rebuild_repairs_index(self, kb, make_page):
        page = make_page(body="recoverable")
        with kb.engine.begin() as conn:
            conn.execute(text("INSERT INTO pages_fts(pages_fts) VALUES('delete-all')"))
        assert kb.search("recoverable") == []
        health = kb.check_health()
        assert health["fts_ok"] is False
        assert health["healthy"] is False

        assert kb.fts.rebuild() == 1
        assert kb.fts.integrity_check() is True
        assert [r.page.id for r in kb.search("recoverable")] == [page.id]


class TestSerialization:
    """Records handed to the calling layer serialize cleanly."""

    def test_search_result_to_json(self, kb, make_page):
        make_page(body="serialize me", labels=["x"])
        (result,) = kb.search("serialize")
        data = json.loads(json.dumps(result.model_dump(mode="json")))
        assert data["page"]["labels"] == ["x"]
        assert data["page"]["page_type"] == "reference"
        assert data["page"]["parent_id"] is None
