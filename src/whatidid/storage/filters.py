"""Metadata filter predicates for page listing and search.

Each filter is an independent predicate: a SQL fragment over the ``pages``
table (aliased ``p``) plus its own bound parameters. ``compose`` joins the
active ones with AND. Parameter names are namespaced per predicate so any
combination can be bound together.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from whatidid.exceptions import ValidationError
from whatidid.models.schema import SAFE_SLUG_PATTERN, PageType, parse_page_type


@dataclass(frozen=True)
class FilterPredicate:
    """One AND-able condition over ``pages p``."""

    sql: str
    params: Dict[str, Any] = field(default_factory=dict)


def space_predicate(slug: str) -> FilterPredicate:
    return FilterPredicate(
        "p.space_id = (SELECT s.id FROM spaces s WHERE s.slug = :f_space)",
        {"f_space": slug},
    )


def page_type_predicate(page_type) -> FilterPredicate:
    return FilterPredicate(
        "p.page_type = :f_page_type",
        {"f_page_type": parse_page_type(page_type).value},
    )


def label_predicate(label: str) -> FilterPredicate:
    return FilterPredicate(
        "EXISTS (SELECT 1 FROM labels l WHERE l.page_id = p.id AND l.label = :f_label)",
        {"f_label": label.strip()},
    )


def created_by_user_predicate(user: str) -> FilterPredicate:
    return FilterPredicate("p.created_by_user = :f_user", {"f_user": user})


def created_by_agent_predicate(agent: str) -> FilterPredicate:
    return FilterPredicate("p.created_by_agent = :f_agent", {"f_agent": agent})


def section_key_predicate(key: str) -> FilterPredicate:
    """Pages whose sections JSON holds a non-blank value under ``key``.

    The key becomes part of a JSON path, so it is restricted to the slug
    alphabet and also passed as a bound parameter.
    """
    if not key or not SAFE_SLUG_PATTERN.match(key):
        raise ValidationError(
            "Section key may only contain letters, digits, underscores and hyphens",
            field="section_key",
            value=key
        )
    return FilterPredicate(
        "p.sections IS NOT NULL "
        "AND TRIM(COALESCE(json_extract(p.sections, :f_section_path), '')) != ''",
        {"f_section_path": f'$."{key}"'},
    )


@dataclass
class SearchFilters:
    """Optional metadata filters; every supplied one must hold."""

    space: Optional[str] = None
    page_type: Optional[PageType] = None
    label: Optional[str] = None
    created_by_user: Optional[str] = None
    created_by_agent: Optional[str] = None
    section_key: Optional[str] = None

    def predicates(self) -> List[FilterPredicate]:
        active = []
        if self.space:
            active.append(space_predicate(self.space))
        if self.page_type:
            active.append(page_type_predicate(self.page_type))
        if self.label:
            active.append(label_predicate(self.label))
        if self.created_by_user:
            active.append(created_by_user_predicate(self.created_by_user))
        if self.created_by_agent:
            active.append(created_by_agent_predicate(self.created_by_agent))
        if self.section_key:
            active.append(section_key_predicate(self.section_key))
        return active


def compose(predicates: List[FilterPredicate]) -> Tuple[str, Dict[str, Any]]:
    """AND the predicates together.

    Returns:
        ``(where_sql, params)``; ``where_sql`` is ``"1 = 1"`` when empty.
    """
    if not predicates:
        return "1 = 1", {}
    params: Dict[str, Any] = {}
    for predicate in predicates:
        params.update(predicate.params)
    return " AND ".join(f"({p.sql})" for p in predicates), params
