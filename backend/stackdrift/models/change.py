"""Change model: a detected difference between two snapshots."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text, false
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stackdrift.database import Base


class Change(Base):
    """A persisted, analyzed change between an old and a new snapshot.

    Snapshot references are fixed at creation. Re-analysis only rewrites the
    analysis columns, and delivery only flips ``notified``.
    """

    __tablename__ = "changes"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    vendor_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("vendors.id", ondelete="CASCADE"),
        index=True,
    )
    document_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("documents.id", ondelete="CASCADE"),
        index=True,
    )
    old_snapshot_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("snapshots.id", ondelete="CASCADE")
    )
    new_snapshot_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("snapshots.id", ondelete="CASCADE")
    )

    # Analysis
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    impact: Mapped[str | None] = mapped_column(Text, nullable=True)
    action: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_level: Mapped[str | None] = mapped_column(String(20), nullable=True)  # low, medium, high
    risk_bucket: Mapped[str | None] = mapped_column(String(50), nullable=True)
    risk_priority: Mapped[str | None] = mapped_column(String(20), nullable=True)  # critical, high, medium, low
    categories: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    is_noise: Mapped[bool] = mapped_column(Boolean, default=False)
    # No Python-side default so inserts can omit it on schemas predating 002
    analysis_failed: Mapped[bool] = mapped_column(Boolean, server_default=false())

    notified: Mapped[bool] = mapped_column(Boolean, default=False)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    # Relationships
    document: Mapped["Document"] = relationship("Document", back_populates="changes")


# Forward reference
from stackdrift.models.document import Document  # noqa: E402
