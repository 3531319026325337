"""Repository for page labels."""
import logging
from typing import Dict, Iterable, List

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from whatidid.exceptions import NotFoundError
from whatidid.models.db_models import DBLabel, DBPage
from whatidid.models.schema import normalize_labels, utc_now
from whatidid.storage.base import Repository

logger = logging.getLogger(__name__)


class LabelRepository(Repository):
    """Labels are (page, string) pairs with no identity of their own.

    Adding or removing a label touches the page's updated_at but not its
    version; content-affecting edits go through ``PageRepository.update``.
    """

    def get_labels(self, page_id: str) -> List[str]:
        def work(session: Session) -> List[str]:
            return self.labels_for(session, page_id)

        return self._read("get_labels", work)

    def add_label(self, page_id: str, label: str) -> List[str]:
        """Attach a label; a label already present is left alone."""
        (label,) = normalize_labels([label])

        def work(session: Session) -> List[str]:
            self._touch(session, page_id)
            session.execute(
                sqlite_insert(DBLabel)
                .values(page_id=page_id, label=label)
                .on_conflict_do_nothing()
            )
            return self.labels_for(session, page_id)

        labels = self._write("add_label", work)
        logger.debug(f"Added label '{label}' to page {page_id}")
        return labels

    def remove_label(self, page_id: str, label: str) -> List[str]:
        def work(session: Session) -> List[str]:
            self._touch(session, page_id)
            session.execute(
                delete(DBLabel).where(
                    DBLabel.page_id == page_id, DBLabel.label == label.strip()
                )
            )
            return self.labels_for(session, page_id)

        return self._write("remove_label", work)

    def get_with_counts(self) -> Dict[str, int]:
        """Every label in use with the number of pages carrying it."""
        def work(session: Session) -> Dict[str, int]:
            rows = session.execute(
                select(DBLabel.label, func.count(DBLabel.page_id))
                .group_by(DBLabel.label)
                .order_by(DBLabel.label)
            ).all()
            return {label: count for label, count in rows}

        return self._read("label_counts", work)

    # Session-level helpers shared with PageRepository so labels are
    # written in the same transaction as the page row.

    @staticmethod
    def labels_for(session: Session, page_id: str) -> List[str]:
        return list(session.scalars(
            select(DBLabel.label).where(DBLabel.page_id == page_id).order_by(DBLabel.label)
        ))

    @staticmethod
    def replace_labels(session: Session, page_id: str, labels: Iterable[str]) -> List[str]:
        """Make the page's label set exactly ``labels``."""
        cleaned = normalize_labels(labels)
        session.execute(delete(DBLabel).where(DBLabel.page_id == page_id))
        if cleaned:
            session.execute(
                sqlite_insert(DBLabel),
                [{"page_id": page_id, "label": label} for label in cleaned],
            )
        return cleaned

    @staticmethod
    def _touch(session: Session, page_id: str) -> None:
        db_page = session.get(DBPage, page_id)
        if db_page is None:
            raise NotFoundError("page", page_id)
        db_page.updated_at = utc_now()
