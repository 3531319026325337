"""Storage layer for the knowledge base."""

from whatidid.storage.base import Repository
from whatidid.storage.label_repository import LabelRepository
from whatidid.storage.link_repository import LinkRepository
from whatidid.storage.page_repository import PageRepository
from whatidid.storage.space_repository import SpaceRepository

__all__ = [
    "Repository",
    "SpaceRepository",
    "PageRepository",
    "LabelRepository",
    "LinkRepository",
]
