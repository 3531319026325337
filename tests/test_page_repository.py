"""Tests for PageRepository create/get/list/update/append/delete."""
import pytest
from sqlalchemy import text

from whatidid.exceptions import ErrorCode, NotFoundError, ValidationError
from whatidid.models import sections as registry
from whatidid.models.schema import PageType
from whatidid.storage.filters import SearchFilters


def _count(kb, sql, **params):
    with kb.engine.connect() as conn:
        return conn.execute(text(sql), params).scalar()


class TestPageCreate:
    """Tests for PageRepository.create()."""

    def test_create_freeform(self, kb, space, identity):
        page = kb.pages.create("proj", "Notes", "session-log", identity, body="did things")
        assert page.version == 1
        assert page.content == "did things"
        assert page.sections is None
        assert page.space_id == space.id
        assert page.created_by_user == "alice"
        assert page.created_by_agent == "build-agent"
        assert page.created_at == page.updated_at
        assert kb.pages.get(page.id) == page

    def test_create_structured_renders_content(self, kb, space, identity, decision_sections):
        page = kb.pages.create(
            "proj", "Use SQLite", PageType.DECISION, identity, sections=decision_sections
        )
        assert page.sections == decision_sections
        assert page.content == registry.render(PageType.DECISION, decision_sections)
        assert kb.pages.get(page.id).content == page.content

    def test_empty_body_is_allowed(self, kb, space, identity):
        page = kb.pages.create("proj", "Empty", "reference", identity, body="")
        assert page.content == ""

    def test_labels_written_with_page(self, kb, space, identity):
        page = kb.pages.create(
            "proj", "Labelled", "reference", identity, body="x", labels=["db", " infra ", "db"]
        )
        assert page.labels == ["db", "infra"]
        assert kb.pages.get(page.id).labels == ["db", "infra"]

    def test_both_body_and_sections(self, kb, space, identity, decision_sections):
        with pytest.raises(ValidationError) as exc_info:
            kb.pages.create(
                "proj", "X", "decision", identity, body="b", sections=decision_sections
            )
        assert exc_info.value.code == ErrorCode.CONTENT_SOURCE_CONFLICT

    def test_neither_body_nor_sections(self, kb, space, identity):
        with pytest.raises(ValidationError) as exc_info:
            kb.pages.create("proj", "X", "decision", identity)
        assert exc_info.value.code == ErrorCode.CONTENT_SOURCE_CONFLICT

    def test_unknown_space(self, kb, identity):
        with pytest.raises(NotFoundError) as exc_info:
            kb.pages.create("ghost", "X", "reference", identity, body="b")
        assert exc_info.value.code == ErrorCode.SPACE_NOT_FOUND

    def test_invalid_page_type(self, kb, space, identity):
        with pytest.raises(ValidationError) as exc_info:
            kb.pages.create("proj", "X", "memo", identity, body="b")
        assert exc_info.value.code == ErrorCode.INVALID_PAGE_TYPE

    def test_invalid_sections(self, kb, space, identity):
        with pytest.raises(ValidationError) as exc_info:
            kb.pages.create("proj", "X", "decision", identity, sections={"context": "c"})
        assert exc_info.value.code == ErrorCode.INVALID_SECTIONS

    def test_sections_on_freeform_type(self, kb, space, identity):
        with pytest.raises(ValidationError):
            kb.pages.create("proj", "X", "reference", identity, sections={"context": "c"})

    def test_blank_title(self, kb, space, identity):
        with pytest.raises(ValidationError):
            kb.pages.create("proj", "   ", "reference", identity, body="b")

    def test_missing_parent(self, kb, space, identity):
        with pytest.raises(NotFoundError):
            kb.pages.create("proj", "Child", "reference", identity, body="b", parent_id="nope")

    def test_parent_in_other_space(self, kb, space, identity, make_page):
        kb.spaces.create("other", "Other")
        parent = make_page(title="Parent")
        with pytest.raises(ValidationError):
            kb.pages.create("other", "Child", "reference", identity, body="b", parent_id=parent.id)

    def test_failed_create_leaves_nothing(self, kb, space, identity):
        with pytest.raises(ValidationError):
            kb.pages.create("proj", "X", "reference", identity, body="b", labels=["ok", ""])
        assert _count(kb, "SELECT COUNT(*) FROM pages") == 0
        assert _count(kb, "SELECT COUNT(*) FROM labels") == 0


class TestPageGetAndList:
    """Tests for get() and list()."""

    def test_get_missing(self, kb):
        with pytest.raises(NotFoundError) as exc_info:
            kb.pages.get("missing")
        assert exc_info.value.code == ErrorCode.PAGE_NOT_FOUND

    def test_list_newest_first(self, kb, make_page):
        first = make_page(title="First")
        second = make_page(title="Second")
        assert [p.id for p in kb.pages.list()] == [second.id, first.id]

    def test_list_filters(self, kb, space, identity, make_page, decision_sections):
        make_page(title="Ref", labels=["db"])
        decision = kb.pages.create(
            "proj", "Dec", "decision", identity, sections=decision_sections, labels=["db"]
        )
        make_page(title="Other decision", page_type="decision")

        result = kb.pages.list(SearchFilters(page_type="decision", label="db"))
        assert [p.id for p in result] == [decision.id]

    def test_list_unknown_space(self, kb):
        with pytest.raises(NotFoundError):
            kb.pages.list(SearchFilters(space="ghost"))

    def test_list_limit(self, kb, make_page):
        for i in range(3):
            make_page(title=f"P{i}")
        assert len(kb.pages.list(limit=2)) == 2

    def test_get_many_skips_missing(self, kb, make_page):
        page = make_page()
        assert set(kb.pages.get_many([page.id, "missing"])) == {page.id}


class TestPageUpdate:
    """Tests for PageRepository.update()."""

    def test_title_update_bumps_version(self, kb, make_page):
        page = make_page(title="Old")
        updated = kb.pages.update(page.id, title="New")
        assert updated.title == "New"
        assert updated.content == page.content
        assert updated.version == 2
        assert updated.updated_at >= page.updated_at
        assert updated.created_at == page.created_at

    def test_sections_replaced_wholesale(self, kb, space, identity, decision_sections):
        page = kb.pages.create(
            "proj", "D", "decision", identity,
            sections={**decision_sections, "consequences": "faster"},
        )
        new_sections = {"context": "c2", "options_considered": "o2", "decision": "d2"}
        updated = kb.pages.update(page.id, sections=new_sections)
        assert updated.sections == new_sections
        assert "consequences" not in updated.sections
        assert updated.content == registry.render(PageType.DECISION, new_sections)

    def test_body_switches_structured_page_to_freeform(self, kb, space, identity, decision_sections):
        page = kb.pages.create("proj", "D", "decision", identity, sections=decision_sections)
        updated = kb.pages.update(page.id, body="plain text now")
        assert updated.sections is None
        assert updated.content == "plain text now"

    def test_sections_switch_freeform_page_to_structured(self, kb, make_page, decision_sections):
        page = make_page(page_type="decision", body="draft")
        updated = kb.pages.update(page.id, sections=decision_sections)
        assert updated.sections == decision_sections
        assert updated.content == registry.render(PageType.DECISION, decision_sections)

    def test_labels_replaced(self, kb, make_page):
        page = make_page(labels=["a", "b"])
        updated = kb.pages.update(page.id, labels=["c"])
        assert updated.labels == ["c"]
        assert updated.version == 2

    def test_both_body_and_sections(self, kb, make_page, decision_sections):
        page = make_page(page_type="decision")
        with pytest.raises(ValidationError):
            kb.pages.update(page.id, body="x", sections=decision_sections)
        assert kb.pages.get(page.id).version == 1

    def test_invalid_sections_leave_page_untouched(self, kb, make_page):
        page = make_page(page_type="decision", body="draft")
        with pytest.raises(ValidationError):
            kb.pages.update(page.id, sections={"context": "only"})
        assert kb.pages.get(page.id) == page

    def test_update_missing(self, kb):
        with pytest.raises(NotFoundError):
            kb.pages.update("missing", title="x")

    def test_version_increments_by_one_each_time(self, kb, make_page):
        page = make_page()
        versions = [kb.pages.update(page.id, body=f"v{i}").version for i in range(5)]
        assert versions == [2, 3, 4, 5, 6]


class TestPageAppend:
    """Tests for PageRepository.append()."""

    def test_append_adds_line(self, kb, make_page):
        page = make_page(body="first")
        updated = kb.pages.append(page.id, "second")
        assert updated.content == "first\nsecond"
        assert updated.version == 2

    def test_append_to_empty_content(self, kb, make_page):
        page = make_page(body="")
        assert kb.pages.append(page.id, "only").content == "only"

    def test_append_to_structured_page(self, kb, space, identity, decision_sections):
        page = kb.pages.create("proj", "D", "decision", identity, sections=decision_sections)
        with pytest.raises(ValidationError) as exc_info:
            kb.pages.append(page.id, "more")
        assert exc_info.value.code == ErrorCode.APPEND_TO_STRUCTURED
        assert kb.pages.get(page.id) == page

    def test_append_blank_text(self, kb, make_page):
        page = make_page()
        with pytest.raises(ValidationError):
            kb.pages.append(page.id, "  ")

    def test_append_missing(self, kb):
        with pytest.raises(NotFoundError):
            kb.pages.append("missing", "x")


class TestPageDelete:
    """Tests for PageRepository.delete()."""

    def test_delete_cascades_labels_and_links(self, kb, make_page):
        a = make_page(title="A", labels=["x", "y"])
        b = make_page(title="B")
        c = make_page(title="C")
        kb.links.create(a.id, b.id)
        kb.links.create(c.id, a.id, "depends-on")
        kb.links.create(b.id, c.id)

        kb.pages.delete(a.id)

        with pytest.raises(NotFoundError):
            kb.pages.get(a.id)
        assert _count(kb, "SELECT COUNT(*) FROM labels WHERE page_id = :id", id=a.id) == 0
        assert _count(
            kb, "SELECT COUNT(*) FROM links WHERE source_id = :id OR target_id = :id", id=a.id
        ) == 0
        assert _count(kb, "SELECT COUNT(*) FROM links") == 1

    def test_delete_orphans_children(self, kb, make_page):
        parent = make_page(title="Parent")
        child = make_page(title="Child", parent_id=parent.id)
        kb.pages.delete(parent.id)
        assert kb.pages.get(child.id).parent_id is None

    def test_delete_missing(self, kb):
        with pytest.raises(NotFoundError):
            kb.pages.delete("missing")
