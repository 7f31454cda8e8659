"""Repository protocol consumed by the change pipeline."""

from datetime import datetime
from typing import Any, Protocol

from stackdrift.models import Change, Document, Snapshot


class PersistenceError(Exception):
    """A write to the policy store failed."""


class PolicyRepository(Protocol):
    """Storage operations the change pipeline needs. All writes are per document."""

    def get_active_documents(self) -> list[Document]: ...

    def get_document(self, document_id: str) -> Document | None: ...

    def get_latest_snapshot(self, document_id: str) -> Snapshot | None: ...

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None: ...

    def create_snapshot(self, document: Document, content_hash: str, content: str) -> Snapshot: ...

    def count_prior_changes(self, document_id: str) -> int: ...

    def get_change(self, change_id: str) -> Change | None: ...

    def create_change(self, **fields: Any) -> Change: ...

    def update_change(self, change_id: str, **fields: Any) -> None: ...

    def update_document_timestamps(
        self,
        document_id: str,
        checked: datetime | None = None,
        changed: datetime | None = None,
    ) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
