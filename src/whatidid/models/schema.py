"""Data models for the whatidid knowledge base."""

import datetime
import os
import re
import threading
from datetime import timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator

from whatidid.exceptions import ErrorCode, ValidationError

# Space slugs and section keys share the same safe alphabet
SAFE_SLUG_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")


def validate_slug(value: str, field_name: str = "slug") -> str:
    """Validate that a value only uses alphanumerics, underscores and hyphens.

    Raises:
        ValueError: If the value is empty or contains other characters
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if not SAFE_SLUG_PATTERN.match(value):
        raise ValueError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric characters, underscores, and hyphens are allowed."
        )
    return value


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite stores DateTime columns without an offset, so every value read
    back is naive and is assumed to be UTC.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a sortable timestamp-based ID with guaranteed uniqueness.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc": the UTC timestamp
        with microseconds, followed by a 6-digit counter that separates IDs
        minted in the same microsecond. The counter is seeded from the
        process ID so agents writing from separate processes do not collide.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)

        if current_timestamp == _last_timestamp:
            _counter += 1
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000

        _counter %= 1_000_000

        date_time = now.strftime("%Y%m%dT%H%M%S")
        return f"{date_time}{now.microsecond:06d}{_counter:06d}"


class PageType(str, Enum):
    """Kinds of knowledge pages."""

    DECISION = "decision"
    ARCHITECTURE = "architecture"
    SESSION_LOG = "session-log"
    REFERENCE = "reference"
    TROUBLESHOOTING = "troubleshooting"
    RUNBOOK = "runbook"


class LinkRelation(str, Enum):
    """Typed relationships between pages."""

    RELATES_TO = "relates-to"
    DEPENDS_ON = "depends-on"
    SUPERSEDES = "supersedes"
    ELABORATES = "elaborates"


def parse_page_type(value) -> PageType:
    """Coerce a string or PageType into a PageType."""
    try:
        return PageType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in PageType)
        raise ValidationError(
            f"Invalid page type '{value}'. Expected one of: {allowed}",
            field="page_type",
            value=value,
            code=ErrorCode.INVALID_PAGE_TYPE
        ) from None


def parse_link_relation(value) -> LinkRelation:
    """Coerce a string or LinkRelation into a LinkRelation."""
    try:
        return LinkRelation(value)
    except ValueError:
        allowed = ", ".join(r.value for r in LinkRelation)
        raise ValidationError(
            f"Invalid link relation '{value}'. Expected one of: {allowed}",
            field="relation",
            value=value,
            code=ErrorCode.INVALID_LINK_RELATION
        ) from None


def normalize_labels(labels: Iterable[str]) -> List[str]:
    """Strip labels, drop duplicates and reject blank ones.

    Returns:
        The unique labels in sorted order.
    """
    cleaned = set()
    for label in labels:
        if not isinstance(label, str) or not label.strip():
            raise ValidationError(
                "Labels must be non-empty strings", field="labels", value=label
            )
        cleaned.add(label.strip())
    return sorted(cleaned)


class Identity(BaseModel):
    """The (human user, acting agent) pair recorded on every page."""

    user: str = Field(..., description="Human user on whose behalf the write happens")
    agent: str = Field(..., description="Agent performing the write")

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("user", "agent")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("identity fields cannot be empty")
        return v.strip()


class Space(BaseModel):
    """A namespace grouping pages, usually one per project."""

    id: str = Field(default_factory=generate_id)
    slug: str = Field(..., description="Unique, immutable short name")
    name: str = Field(..., description="Display name")
    description: str = Field(default="")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("slug")
    @classmethod
    def _validate_slug(cls, v: str) -> str:
        return validate_slug(v, "slug")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Space name cannot be empty")
        return v


class Page(BaseModel):
    """A knowledge document."""

    id: str = Field(default_factory=generate_id)
    space_id: str
    parent_id: Optional[str] = None
    title: str
    page_type: PageType
    content: str = ""
    sections: Optional[Dict[str, str]] = Field(
        default=None, description="Section key to text, in schema order"
    )
    created_by_user: str
    created_by_agent: str
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, ge=1)
    labels: List[str] = Field(default_factory=list)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def _validate_title(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @property
    def is_structured(self) -> bool:
        """Whether the content is derived from sections."""
        return self.sections is not None


class Link(BaseModel):
    """A directed, typed edge between two pages."""

    source_id: str
    target_id: str
    relation: LinkRelation = LinkRelation.RELATES_TO
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"extra": "forbid", "frozen": True}


class SearchResult(BaseModel):
    """One search hit.

    ``rank`` is the FTS5 bm25 score (lower is more relevant) and is None
    for metadata-only searches.
    """

    page: Page
    rank: Optional[float] = None
    excerpt: str = ""


class PageNode(BaseModel):
    """A page and its descendants, as returned by tree traversal."""

    page: Page
    children: List["PageNode"] = Field(default_factory=list)


PageNode.model_rebuild()
