"""Tests for SpaceRepository."""
import pytest

from whatidid.exceptions import (ConstraintViolationError, ErrorCode,
                                 NotFoundError, ValidationError)


class TestSpaceCreate:
    """Tests for SpaceRepository.create()."""

    def test_create_and_get(self, kb):
        created = kb.spaces.create("proj", "Project", "All things project")
        fetched = kb.spaces.get("proj")
        assert fetched == created
        assert fetched.description == "All things project"
        assert fetched.created_at == fetched.updated_at

    def test_duplicate_slug_is_constraint_violation(self, kb):
        kb.spaces.create("proj", "Project")
        with pytest.raises(ConstraintViolationError) as exc_info:
            kb.spaces.create("proj", "Another")
        assert exc_info.value.code == ErrorCode.CONSTRAINT_VIOLATION

    @pytest.mark.parametrize("slug", ["", "has space", "../up", "dot.ted"])
    def test_invalid_slug(self, kb, slug):
        with pytest.raises(ValidationError):
            kb.spaces.create(slug, "Name")

    def test_blank_name(self, kb):
        with pytest.raises(ValidationError):
            kb.spaces.create("proj", "  ")


class TestSpaceRead:
    """Tests for lookups and listing."""

    def test_get_missing(self, kb):
        with pytest.raises(NotFoundError) as exc_info:
            kb.spaces.get("nope")
        assert exc_info.value.code == ErrorCode.SPACE_NOT_FOUND

    def test_find_missing_returns_none(self, kb):
        assert kb.spaces.find("nope") is None

    def test_get_by_id(self, kb, space):
        assert kb.spaces.get_by_id(space.id).slug == "proj"

    def test_list_newest_first(self, kb):
        kb.spaces.create("first", "First")
        kb.spaces.create("second", "Second")
        assert [s.slug for s in kb.spaces.list()] == ["second", "first"]


class TestSpaceUpdate:
    """Tests for SpaceRepository.update()."""

    def test_update_name_and_description(self, kb, space):
        updated = kb.spaces.update("proj", name="Renamed", description="new")
        assert updated.slug == "proj"
        assert updated.name == "Renamed"
        assert updated.description == "new"
        assert updated.updated_at >= space.updated_at

    def test_partial_update_keeps_other_fields(self, kb, space):
        updated = kb.spaces.update("proj", description="only this")
        assert updated.name == space.name

    def test_update_missing(self, kb):
        with pytest.raises(NotFoundError):
            kb.spaces.update("nope", name="x")


class TestSpaceDelete:
    """Deleting a space requires it to be empty."""

    def test_delete_empty_space(self, kb, space):
        kb.spaces.delete("proj")
        assert kb.spaces.find("proj") is None

    def test_delete_space_with_pages_fails(self, kb, space, make_page):
        make_page()
        with pytest.raises(ValidationError) as exc_info:
            kb.spaces.delete("proj")
        assert exc_info.value.code == ErrorCode.SPACE_NOT_EMPTY
        assert kb.spaces.get("proj") == space

    def test_delete_after_removing_pages(self, kb, space, make_page):
        page = make_page()
        with pytest.raises(ValidationError):
            kb.spaces.delete("proj")
        kb.pages.delete(page.id)
        kb.spaces.delete("proj")
        assert kb.spaces.list() == []

    def test_count_pages(self, kb, space, make_page):
        make_page(title="One")
        make_page(title="Two")
        assert kb.spaces.count_pages("proj") == 2

    def test_delete_missing(self, kb):
        with pytest.raises(NotFoundError):
            kb.spaces.delete("nope")
