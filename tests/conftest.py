"""Common test fixtures for the whatidid knowledge base."""

import tempfile
from pathlib import Path

import pytest

from whatidid.config import config
from whatidid.models.db_models import init_db
from whatidid.models.schema import Identity
from whatidid.services.knowledge_service import KnowledgeBase


@pytest.fixture
def temp_db_dir():
    """Create a temporary directory for the database file."""
    with tempfile.TemporaryDirectory() as db_dir:
        yield Path(db_dir)


@pytest.fixture
def test_config(temp_db_dir, monkeypatch):
    """Point the global config at a throwaway database (auto-restored)."""
    monkeypatch.setattr(config, "database_path", temp_db_dir / "kb.db")
    monkeypatch.setattr(config, "log_dir", temp_db_dir / "logs")
    monkeypatch.setattr(config, "write_retry_delay", 0.01)
    yield config


@pytest.fixture
def engine(test_config):
    """A bare, unmigrated engine on the test database."""
    engine = init_db(test_config.database_path, test_config)
    yield engine
    engine.dispose()


@pytest.fixture
def kb(test_config):
    """An opened, fully migrated knowledge base."""
    knowledge_base = KnowledgeBase(settings=test_config)
    yield knowledge_base
    knowledge_base.close()


@pytest.fixture
def identity():
    return Identity(user="alice", agent="build-agent")


@pytest.fixture
def space(kb):
    return kb.spaces.create("proj", "Project", "Main project space")


@pytest.fixture
def decision_sections():
    return {"context": "c", "options_considered": "o", "decision": "d"}


@pytest.fixture
def make_page(kb, space, identity):
    """Factory creating freeform pages in the ``proj`` space."""
    def _make(title="Page", body="body text", page_type="reference", **kwargs):
        return kb.pages.create(
            space.slug, title, page_type, identity, body=body, **kwargs
        )
    return _make
