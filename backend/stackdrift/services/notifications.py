"""Notification payloads for detected changes.

Building the payload is pure. Delivery (email, Slack, signed webhooks, retry
policies, per-channel severity filters) belongs to the dispatcher behind
``NotificationDispatcher``.
"""

import logging
from datetime import datetime, timezone
from typing import Protocol

from pydantic import BaseModel

from stackdrift.models import Change, Document, Vendor
from stackdrift.models.document import document_kind_label
from stackdrift.services.classifier import KeywordClassifier
from stackdrift.services.risk_buckets import RiskBucket

logger = logging.getLogger(__name__)

CHANGE_DETECTED_EVENT = "vendor.change.detected"


class NotificationPayload(BaseModel):
    """Alert consumed by external delivery channels."""

    event: str = CHANGE_DETECTED_EVENT
    change_id: str
    timestamp: str
    vendor: str
    document_type: str
    severity: str
    title: str
    summary: str
    impact: str
    action: str
    tags: list[str]
    diff_url: str


class NotificationDispatcher(Protocol):
    def dispatch(self, payload: NotificationPayload) -> None: ...


class LoggingNotificationDispatcher:
    """Dispatcher that only records the alert; transports plug in elsewhere."""

    def dispatch(self, payload: NotificationPayload) -> None:
        logger.info(
            f"[{payload.severity.upper()}] {payload.title}: {payload.summary}",
            extra={"notification": payload.model_dump()},
        )


def _title_for(vendor_name: str, label: str, bucket: str | None) -> str:
    try:
        risk_bucket = RiskBucket(bucket) if bucket else None
    except ValueError:
        risk_bucket = None
    return KeywordClassifier().alert_title(f"{vendor_name} - {label}", risk_bucket)


def build_notification_payload(
    change: Change,
    document: Document,
    vendor: Vendor,
    base_url: str,
) -> NotificationPayload:
    """Assemble the alert for a persisted change. No I/O."""
    label = document_kind_label(document.doc_type)
    detected_at = change.detected_at or datetime.now(timezone.utc)

    return NotificationPayload(
        change_id=str(change.id),
        timestamp=detected_at.isoformat(),
        vendor=vendor.name,
        document_type=label,
        severity=change.risk_priority or "low",
        title=_title_for(vendor.name, label, change.risk_bucket),
        summary=change.summary or "",
        impact=change.impact or "",
        action=change.action or "",
        tags=list(change.categories or []),
        diff_url=f"{base_url.rstrip('/')}/dashboard/history?change={change.id}",
    )
