"""SQLAlchemy models."""

from stackdrift.models.change import Change
from stackdrift.models.document import DOCUMENT_KIND_LABELS, Document, DocumentKind
from stackdrift.models.snapshot import Snapshot
from stackdrift.models.vendor import Vendor

__all__ = [
    "Vendor",
    "Document",
    "DocumentKind",
    "DOCUMENT_KIND_LABELS",
    "Snapshot",
    "Change",
]
