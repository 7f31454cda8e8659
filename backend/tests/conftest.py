import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stackdrift.database import Base
from stackdrift.models import Change, Document, Snapshot, Vendor
from stackdrift.repositories import PersistenceError
from stackdrift.services.analyzer import Analysis, risk_level_to_priority
from stackdrift.services.differ import fingerprint
from stackdrift.services.pipeline import ChangePipeline
from stackdrift.services.safety_nets import SafetyNetPolicy

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@compiles(UUID, "sqlite")
def _compile_uuid_sqlite(_element, _compiler, **_kw):
    return "CHAR(36)"


def policy_text(count: int, prefix: str = "Clause", start: int = 0) -> str:
    """Document body with ``count`` distinct sentences."""
    return " ".join(
        f"{prefix} {i} describes how the service handles customer accounts."
        for i in range(start, start + count)
    )


def make_analysis(
    risk_level: str = "medium",
    is_noise: bool = False,
    analysis_failed: bool = False,
    risk_bucket: str | None = None,
    summary: str = "Terms were reworded.",
) -> Analysis:
    return Analysis(
        summary=summary,
        impact="Little practical effect.",
        action="No action needed.",
        risk_level=risk_level,
        risk_priority=risk_level_to_priority(risk_level),
        risk_bucket=risk_bucket,
        categories=[risk_bucket] if risk_bucket else [],
        title="Policy updated",
        is_noise=is_noise,
        analysis_failed=analysis_failed,
    )


class InMemoryRepository:
    """PolicyRepository backed by plain dicts of transient model instances."""

    def __init__(self):
        self.documents: dict[str, Document] = {}
        self.snapshots: list[Snapshot] = []
        self.changes: dict[str, Change] = {}
        self.commits = 0
        self.rollbacks = 0
        self.fail_create_change = False
        self.fail_update_change = False

    def add_document(
        self,
        vendor_name: str = "Acme",
        doc_type: str = "tos",
        url: str | None = None,
        is_active: bool = True,
        vendor_active: bool = True,
    ) -> Document:
        vendor = Vendor(id=str(uuid4()), name=vendor_name, is_active=vendor_active)
        document = Document(
            id=str(uuid4()),
            vendor_id=vendor.id,
            doc_type=doc_type,
            url=url or f"https://{vendor_name.lower()}.example/{doc_type}",
            is_active=is_active,
        )
        document.vendor = vendor
        self.documents[document.id] = document
        return document

    def add_snapshot(self, document: Document, content: str, fetched_at: datetime) -> Snapshot:
        snapshot = Snapshot(
            id=str(uuid4()),
            document_id=document.id,
            vendor_id=document.vendor_id,
            content_hash=fingerprint(content),
            content=content,
            fetched_at=fetched_at,
        )
        self.snapshots.append(snapshot)
        return snapshot

    def add_change(self, document: Document, old: Snapshot, new: Snapshot, **fields: Any) -> Change:
        values = {
            "summary": "Earlier change.",
            "risk_level": "medium",
            "risk_priority": "medium",
            "is_noise": False,
            "notified": True,
            "detected_at": NOW,
            **fields,
        }
        change = Change(
            id=str(uuid4()),
            vendor_id=document.vendor_id,
            document_id=document.id,
            old_snapshot_id=old.id,
            new_snapshot_id=new.id,
            **values,
        )
        self.changes[change.id] = change
        return change

    def snapshots_for(self, document: Document) -> list[Snapshot]:
        return [s for s in self.snapshots if s.document_id == document.id]

    def changes_for(self, document: Document) -> list[Change]:
        return [c for c in self.changes.values() if c.document_id == document.id]

    # PolicyRepository

    def get_active_documents(self) -> list[Document]:
        return [d for d in self.documents.values() if d.is_active and d.vendor.is_active]

    def get_document(self, document_id: str) -> Document | None:
        return self.documents.get(document_id)

    def get_latest_snapshot(self, document_id: str) -> Snapshot | None:
        candidates = [s for s in self.snapshots if s.document_id == document_id]
        return max(candidates, key=lambda s: s.fetched_at, default=None)

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        return next((s for s in self.snapshots if s.id == snapshot_id), None)

    def create_snapshot(self, document: Document, content_hash: str, content: str) -> Snapshot:
        snapshot = Snapshot(
            id=str(uuid4()),
            document_id=document.id,
            vendor_id=document.vendor_id,
            content_hash=content_hash,
            content=content,
            fetched_at=datetime.now(timezone.utc),
        )
        self.snapshots.append(snapshot)
        return snapshot

    def count_prior_changes(self, document_id: str) -> int:
        return sum(1 for c in self.changes.values() if c.document_id == document_id)

    def get_change(self, change_id: str) -> Change | None:
        return self.changes.get(change_id)

    def create_change(self, **fields: Any) -> Change:
        if self.fail_create_change:
            raise PersistenceError("insert into changes failed")
        change = Change(id=str(uuid4()), notified=False, **fields)
        self.changes[change.id] = change
        return change

    def update_change(self, change_id: str, **fields: Any) -> None:
        if self.fail_update_change:
            raise PersistenceError("update of changes failed")
        change = self.changes[change_id]
        for key, value in fields.items():
            setattr(change, key, value)

    def update_document_timestamps(
        self,
        document_id: str,
        checked: datetime | None = None,
        changed: datetime | None = None,
    ) -> None:
        document = self.documents[document_id]
        if checked is not None:
            document.last_checked_at = checked
        if changed is not None:
            document.last_changed_at = changed

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


class FakeFetcher:
    """Returns canned text per URL; an exception value is raised instead."""

    def __init__(self, pages: dict[str, Any] | None = None):
        self.pages = pages or {}
        self.calls: list[str] = []

    def fetch(self, url: str) -> str:
        self.calls.append(url)
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return page


class FakeAnalyzer:
    def __init__(self, analysis: Analysis | None = None):
        self.analysis = analysis or make_analysis()
        self.calls: list[dict[str, Any]] = []

    def analyze(self, document_label, added, removed, effective_date=None) -> Analysis:
        self.calls.append(
            {
                "document_label": document_label,
                "added": list(added),
                "removed": list(removed),
                "effective_date": effective_date,
            }
        )
        return self.analysis


class FakeDispatcher:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.payloads = []

    def dispatch(self, payload) -> None:
        if self.error is not None:
            raise self.error
        self.payloads.append(payload)


@pytest.fixture()
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture()
def make_pipeline(repository, fetcher, analyzer, dispatcher) -> Callable[..., ChangePipeline]:
    def _make(**overrides: Any) -> ChangePipeline:
        kwargs = {
            "repository": repository,
            "fetcher": fetcher,
            "analyzer": analyzer,
            "dispatcher": dispatcher,
            "policy": SafetyNetPolicy(),
            "base_url": "https://app.example",
            "clock": lambda: NOW,
        }
        kwargs.update(overrides)
        return ChangePipeline(**kwargs)

    return _make


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to behave
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection):
        connection.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine):
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
