"""PostgreSQL repository implementation.

Implements the ``PolicyRepository`` protocol with a synchronous SQLAlchemy
session. Methods flush; the pipeline decides when to commit.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from stackdrift.models import Change, Document, Snapshot, Vendor
from stackdrift.repositories.protocols import PersistenceError

logger = logging.getLogger(__name__)

# Columns added after the initial schema; inserts retry without them
OPTIONAL_CHANGE_COLUMNS = ("analysis_failed", "impact", "action")


# postgres: column "impact" of relation "changes" does not exist
# sqlite: table changes has no column named impact
_MISSING_COLUMN = re.compile(r'column (?:named )?"?(\w+)"?')


def _missing_optional_columns(error: SQLAlchemyError, values: dict[str, Any]) -> list[str]:
    message = str(getattr(error, "orig", error)).lower()
    named = set(_MISSING_COLUMN.findall(message))
    return [c for c in OPTIONAL_CHANGE_COLUMNS if c in values and c in named]


class PostgresPolicyRepository:
    """PostgreSQL implementation of the policy repository."""

    def __init__(self, session: Session):
        self.session = session

    def get_active_documents(self) -> list[Document]:
        """Active documents belonging to active vendors."""
        result = self.session.execute(
            select(Document)
            .join(Vendor, Document.vendor_id == Vendor.id)
            .options(joinedload(Document.vendor))
            .where(Document.is_active.is_(True), Vendor.is_active.is_(True))
            .order_by(Vendor.name.asc(), Document.doc_type.asc())
        )
        return list(result.scalars().all())

    def get_document(self, document_id: str) -> Document | None:
        return self.session.get(Document, document_id, options=[joinedload(Document.vendor)])

    def get_latest_snapshot(self, document_id: str) -> Snapshot | None:
        """Most recent snapshot for a document (the comparison baseline)."""
        result = self.session.execute(
            select(Snapshot)
            .where(Snapshot.document_id == document_id)
            .order_by(Snapshot.fetched_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        return self.session.get(Snapshot, snapshot_id)

    def create_snapshot(self, document: Document, content_hash: str, content: str) -> Snapshot:
        """Insert a new snapshot for a document."""
        snapshot = Snapshot(
            document_id=document.id,
            vendor_id=document.vendor_id,
            content_hash=content_hash,
            content=content,
        )
        try:
            self.session.add(snapshot)
            self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save snapshot for document {document.id}: {e}") from e
        return snapshot

    def count_prior_changes(self, document_id: str) -> int:
        result = self.session.execute(
            select(func.count()).select_from(Change).where(Change.document_id == document_id)
        )
        return result.scalar_one()

    def get_change(self, change_id: str) -> Change | None:
        return self.session.get(Change, change_id)

    def _insert_change(self, values: dict[str, Any]) -> None:
        with self.session.begin_nested():
            self.session.execute(insert(Change).values(**values))

    def create_change(self, **fields: Any) -> Change:
        """Insert a change record.

        When the insert fails because an optional column doesn't exist yet
        (schema older than migration 002), the column named in the error is
        dropped and the insert retried. The database reports one missing
        column at a time, so this repeats until no optional column is left.
        """
        values = {
            "id": str(uuid4()),
            "is_noise": False,
            "notified": False,
            "detected_at": datetime.now(timezone.utc),
            **fields,
        }
        while True:
            try:
                self._insert_change(values)
                break
            except (OperationalError, ProgrammingError) as e:
                missing = _missing_optional_columns(e, values)
                if not missing:
                    raise PersistenceError(f"Failed to save change: {e}") from e
                logger.warning(f"changes table lacks {missing}, retrying insert without them")
                for column in missing:
                    values.pop(column)
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to save change: {e}") from e

        # Not read back: a row on an older schema cannot be loaded through the model
        return Change(**values)

    def update_change(self, change_id: str, **fields: Any) -> None:
        """Overwrite fields on an existing change."""
        try:
            self.session.execute(
                update(Change).where(Change.id == change_id).values(**fields)
            )
            self.session.flush()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update change {change_id}: {e}") from e

    def update_document_timestamps(
        self,
        document_id: str,
        checked: datetime | None = None,
        changed: datetime | None = None,
    ) -> None:
        values = {}
        if checked is not None:
            values["last_checked_at"] = checked
        if changed is not None:
            values["last_changed_at"] = changed
        if not values:
            return
        try:
            self.session.execute(
                update(Document).where(Document.id == document_id).values(**values)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update document {document_id}: {e}") from e

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
