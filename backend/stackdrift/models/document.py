"""Document model for monitored legal and pricing pages."""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stackdrift.database import Base


class DocumentKind(str, Enum):
    """Kinds of vendor documents we track."""

    TOS = "tos"
    PRIVACY = "privacy"
    AUP = "aup"
    PRICING = "pricing"
    API_TERMS = "api_terms"
    CHANGELOG = "changelog"

    @property
    def label(self) -> str:
        return DOCUMENT_KIND_LABELS[self]


DOCUMENT_KIND_LABELS: dict[DocumentKind, str] = {
    DocumentKind.TOS: "Terms of Service",
    DocumentKind.PRIVACY: "Privacy Policy",
    DocumentKind.AUP: "Acceptable Use Policy",
    DocumentKind.PRICING: "Pricing",
    DocumentKind.API_TERMS: "API Terms",
    DocumentKind.CHANGELOG: "Changelog",
}


def document_kind_label(doc_type: str) -> str:
    """Display label for a stored doc_type, falling back to the raw value."""
    try:
        return DocumentKind(doc_type).label
    except ValueError:
        return doc_type


class Document(Base):
    """A vendor document (ToS, privacy policy, ...) checked for changes."""

    __tablename__ = "documents"

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
    doc_type: Mapped[str] = mapped_column(String(50))  # DocumentKind value
    url: Mapped[str] = mapped_column(String(2048))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    last_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_changed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    vendor: Mapped["Vendor"] = relationship("Vendor", back_populates="documents")
    snapshots: Mapped[list["Snapshot"]] = relationship(
        "Snapshot", back_populates="document", cascade="all, delete-orphan"
    )
    changes: Mapped[list["Change"]] = relationship(
        "Change", back_populates="document", cascade="all, delete-orphan"
    )

    @property
    def label(self) -> str:
        """Document type label, e.g. "Terms of Service"."""
        return document_kind_label(self.doc_type)

    @property
    def display_name(self) -> str:
        """Vendor and document label, e.g. "Stripe - Terms of Service"."""
        vendor_name = self.vendor.name if self.vendor else "Unknown"
        return f"{vendor_name} - {self.label}"


# Forward references
from stackdrift.models.change import Change  # noqa: E402
from stackdrift.models.snapshot import Snapshot  # noqa: E402
from stackdrift.models.vendor import Vendor  # noqa: E402
