"""Per-page-type section schemas.

Typed pages (decisions, runbooks, ...) carry their content as named
sections. The registry below says which sections each type accepts and
which are required; ``render`` turns a validated mapping into the flat
markdown that is stored in ``pages.content`` and indexed for search.
"""
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from whatidid.exceptions import ErrorCode, ValidationError
from whatidid.models.schema import PageType


@dataclass(frozen=True)
class SectionDef:
    """A named section within a page type's schema."""

    key: str
    required: bool

    @property
    def heading(self) -> str:
        """Display heading: ``options_considered`` -> ``Options Considered``."""
        return " ".join(word.capitalize() for word in self.key.split("_"))


SECTION_SCHEMAS: Dict[PageType, List[SectionDef]] = {
    PageType.DECISION: [
        SectionDef("context", True),
        SectionDef("options_considered", True),
        SectionDef("decision", True),
        SectionDef("consequences", False),
    ],
    PageType.ARCHITECTURE: [
        SectionDef("context", True),
        SectionDef("design", True),
        SectionDef("rationale", False),
        SectionDef("constraints", False),
    ],
    PageType.TROUBLESHOOTING: [
        SectionDef("problem", True),
        SectionDef("diagnosis", True),
        SectionDef("solution", True),
    ],
    PageType.RUNBOOK: [
        SectionDef("prerequisites", False),
        SectionDef("steps", True),
        SectionDef("rollback", False),
    ],
}


def schema_for(page_type: PageType) -> Optional[List[SectionDef]]:
    """Return the ordered section schema, or None for freeform types."""
    schema = SECTION_SCHEMAS.get(PageType(page_type))
    return list(schema) if schema is not None else None


def section_keys(page_type: PageType) -> List[str]:
    schema = schema_for(page_type) or []
    return [s.key for s in schema]


def validate(page_type: PageType, sections: Mapping[str, str]) -> Dict[str, str]:
    """Check a sections mapping against the type's schema.

    Every required key must be present with non-blank text and no key may
    fall outside the schema. Blank optional sections are dropped.

    Returns:
        The sections in schema order.

    Raises:
        ValidationError: If the type is freeform or the mapping does not fit.
    """
    page_type = PageType(page_type)
    schema = schema_for(page_type)
    if schema is None:
        raise ValidationError(
            f"Page type '{page_type.value}' is freeform and does not take sections",
            field="sections",
            code=ErrorCode.INVALID_SECTIONS
        )
    if not isinstance(sections, Mapping):
        raise ValidationError(
            "Sections must be a mapping of section key to text",
            field="sections",
            code=ErrorCode.INVALID_SECTIONS
        )

    known = {s.key for s in schema}
    unknown = sorted(k for k in sections if k not in known)
    if unknown:
        raise ValidationError(
            f"Unknown section(s) for {page_type.value}: {', '.join(map(str, unknown))}. "
            f"Expected: {', '.join(s.key for s in schema)}",
            field="sections",
            value=unknown,
            code=ErrorCode.INVALID_SECTIONS
        )

    for key, value in sections.items():
        if not isinstance(value, str):
            raise ValidationError(
                f"Section '{key}' must be text",
                field=key,
                value=value,
                code=ErrorCode.INVALID_SECTIONS
            )

    missing = [
        s.key for s in schema
        if s.required and not (sections.get(s.key) or "").strip()
    ]
    if missing:
        raise ValidationError(
            f"Missing required section(s) for {page_type.value}: {', '.join(missing)}",
            field="sections",
            value=missing,
            code=ErrorCode.INVALID_SECTIONS
        )

    return {
        s.key: sections[s.key]
        for s in schema
        if (sections.get(s.key) or "").strip()
    }


def render(page_type: PageType, sections: Mapping[str, str]) -> str:
    """Render sections to markdown in schema order.

    Each present section becomes ``## Heading`` followed by its text;
    blocks are separated by a blank line. Pure: identical input always
    yields identical output.
    """
    schema = schema_for(page_type) or []
    blocks = [
        f"## {s.heading}\n{sections[s.key]}"
        for s in schema
        if (sections.get(s.key) or "").strip()
    ]
    return "\n\n".join(blocks)
