"""Change detection pipeline.

Runs every active document through fetch, fingerprint, snapshot, safety nets,
analysis and notification. Each document is isolated: a failure is recorded
as an ``error`` outcome and the batch moves on.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from stackdrift.config import Settings
from stackdrift.models import Change, Document
from stackdrift.repositories import PersistenceError, PolicyRepository, PostgresPolicyRepository
from stackdrift.services.analyzer import Analysis, SemanticAnalyzer
from stackdrift.services.differ import Diff, diff, fingerprint
from stackdrift.services.fetcher import ContentFetcher, extract_effective_date
from stackdrift.services.llm_client import LLMClient
from stackdrift.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    build_notification_payload,
)
from stackdrift.services.risk_buckets import RiskPriority
from stackdrift.services.safety_nets import (
    SAFETY_NETS,
    CheckContext,
    OutcomeStatus,
    SafetyNet,
    SafetyNetPolicy,
    Stage,
    normalize_noise,
    run_safety_nets,
)

logger = logging.getLogger(__name__)

FULL_REPLACEMENT_SUMMARY = (
    "Large-scale content change detected (likely page restructure or language change). "
    "New baseline saved."
)


class ReanalysisPreconditionError(Exception):
    """A change cannot be re-analyzed in its current state."""


class ChangeNotFoundError(ReanalysisPreconditionError):
    pass


class SnapshotNotFoundError(ReanalysisPreconditionError):
    pass


class EmptySnapshotError(ReanalysisPreconditionError):
    pass


class EmptyDiffError(ReanalysisPreconditionError):
    pass


@dataclass
class DocumentOutcome:
    """What happened to one document during a run."""
    document: str
    document_id: str
    status: OutcomeStatus
    risk_level: str | None = None
    change_id: str | None = None
    content_length: int | None = None
    change_ratio: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "document": self.document,
            "document_id": self.document_id,
            "status": self.status.value,
        }
        optional = {
            "risk_level": self.risk_level,
            "change_id": self.change_id,
            "content_length": self.content_length,
            "change_ratio": self.change_ratio,
            "error": self.error,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass
class BatchResult:
    """Outcomes of one run plus documents deferred by the time budget."""
    outcomes: list[DocumentOutcome] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)

    @property
    def checked(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "deferred": len(self.deferred),
            "results": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class ReanalysisResult:
    change_id: str
    summary: str
    risk_level: str
    risk_priority: str
    is_noise: bool
    analysis_failed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "change_id": self.change_id,
            "summary": self.summary,
            "risk_level": self.risk_level,
            "risk_priority": self.risk_priority,
            "is_noise": self.is_noise,
            "analysis_failed": self.analysis_failed,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangePipeline:
    """Orchestrates change detection for monitored documents."""

    def __init__(
        self,
        repository: PolicyRepository,
        fetcher: ContentFetcher,
        analyzer: SemanticAnalyzer,
        dispatcher: NotificationDispatcher,
        policy: SafetyNetPolicy | None = None,
        base_url: str = "",
        safety_nets: tuple[SafetyNet, ...] = SAFETY_NETS,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.dispatcher = dispatcher
        self.policy = policy or SafetyNetPolicy()
        self.base_url = base_url
        self.safety_nets = safety_nets
        self._clock = clock
        self._monotonic = monotonic

    def _check(self, stage: Stage, ctx: CheckContext) -> OutcomeStatus | None:
        status = run_safety_nets(stage, ctx, self.policy, self.safety_nets)
        if status is not None:
            logger.info(f"'{ctx.document.display_name}' stopped at {stage.value}: {status.value}")
        return status

    def run_batch(self, budget_seconds: float | None = None) -> BatchResult:
        """Process every active document sequentially within a wall-clock budget.

        Documents not started before the budget runs out are deferred to the
        next run.
        """
        documents = self.repository.get_active_documents()
        logger.info(f"Checking {len(documents)} active documents")

        result = BatchResult()
        started = self._monotonic()
        for index, document in enumerate(documents):
            if budget_seconds is not None and self._monotonic() - started >= budget_seconds:
                result.deferred = [d.id for d in documents[index:]]
                logger.warning(
                    f"Time budget of {budget_seconds}s spent, deferring {len(result.deferred)} documents"
                )
                break
            result.outcomes.append(self.process_document(document))

        counts: dict[str, int] = {}
        for outcome in result.outcomes:
            counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1
        logger.info(f"Batch complete: {result.checked} checked, {len(result.deferred)} deferred, {counts}")
        return result

    def process_document(self, document: Document) -> DocumentOutcome:
        """Run one document through the pipeline. Never raises."""
        label = document.display_name
        document_id = document.id
        ctx = CheckContext(document=document, now=self._clock())
        try:
            return self._process(ctx)
        except Exception as e:
            logger.exception(f"Error processing '{label}': {e}")
            self.repository.rollback()
            return DocumentOutcome(label, document_id, OutcomeStatus.ERROR, error=str(e))

    def _process(self, ctx: CheckContext) -> DocumentOutcome:
        document = ctx.document
        label = document.display_name

        ctx.content = self.fetcher.fetch(document.url)
        status = self._check(Stage.FETCHED, ctx)
        if status is not None:
            return self._outcome(ctx, status, content_length=len(ctx.content))

        ctx.content_hash = fingerprint(ctx.content)
        ctx.previous = self.repository.get_latest_snapshot(document.id)
        self.repository.update_document_timestamps(document.id, checked=ctx.now)

        status = self._check(Stage.FINGERPRINTED, ctx)
        if status is not None:
            self.repository.commit()
            return self._outcome(ctx, status)

        # The new snapshot is durable before any analysis is attempted
        ctx.current = self.repository.create_snapshot(document, ctx.content_hash, ctx.content)
        self.repository.commit()

        status = self._check(Stage.SNAPSHOT_SAVED, ctx)
        if status is not None:
            return self._finish_baseline(ctx, status)

        ctx.analysis = self.analyzer.analyze(
            label,
            ctx.diff.added,
            ctx.diff.removed,
            effective_date=extract_effective_date(ctx.content),
        )
        ctx.effective_risk_level, ctx.effective_priority = normalize_noise(ctx.analysis)
        ctx.prior_change_count = self.repository.count_prior_changes(document.id)

        status = self._check(Stage.ANALYZED, ctx)
        if status is not None:
            self.repository.update_document_timestamps(document.id, changed=ctx.now)
            self.repository.commit()
            return self._outcome(ctx, status, risk_level=ctx.effective_risk_level)

        # The change is durable before any alert can point at it
        change = self._record_change(ctx)
        self.repository.commit()
        if not ctx.is_noise and ctx.effective_risk_level != "low":
            self._notify(change, document)

        status = OutcomeStatus.NOISE if ctx.is_noise else OutcomeStatus.CHANGED
        logger.info(f"'{label}': {status.value} ({ctx.effective_risk_level})")
        return self._outcome(ctx, status, risk_level=ctx.effective_risk_level, change_id=change.id)

    def _finish_baseline(self, ctx: CheckContext, status: OutcomeStatus) -> DocumentOutcome:
        document = ctx.document
        if status == OutcomeStatus.INITIAL_SNAPSHOT:
            return self._outcome(ctx, status)

        if status == OutcomeStatus.STALE_BASELINE_RESET:
            self.repository.update_document_timestamps(document.id, changed=ctx.now)
            self.repository.commit()
            return self._outcome(ctx, status)

        # Full replacement: keep an audit record, but never alert on it
        change = self.repository.create_change(
            vendor_id=document.vendor_id,
            document_id=document.id,
            old_snapshot_id=ctx.previous.id,
            new_snapshot_id=ctx.current.id,
            summary=FULL_REPLACEMENT_SUMMARY,
            risk_level="low",
            risk_priority=RiskPriority.LOW.value,
            categories=[],
            is_noise=True,
            detected_at=ctx.now,
        )
        self.repository.update_document_timestamps(document.id, changed=ctx.now)
        self.repository.commit()
        return self._outcome(
            ctx, status, change_id=change.id, change_ratio=round(ctx.change_ratio, 3)
        )

    def _record_change(self, ctx: CheckContext) -> Change:
        analysis: Analysis = ctx.analysis
        change = self.repository.create_change(
            vendor_id=ctx.document.vendor_id,
            document_id=ctx.document.id,
            old_snapshot_id=ctx.previous.id,
            new_snapshot_id=ctx.current.id,
            summary=analysis.summary,
            impact=analysis.impact,
            action=analysis.action,
            risk_level=ctx.effective_risk_level,
            risk_bucket=analysis.risk_bucket,
            risk_priority=ctx.effective_priority.value,
            categories=analysis.categories,
            is_noise=analysis.is_noise,
            analysis_failed=analysis.analysis_failed,
            detected_at=ctx.now,
        )
        self.repository.update_document_timestamps(ctx.document.id, changed=ctx.now)
        return change

    def _notify(self, change: Change, document: Document) -> None:
        """Hand the alert to the dispatcher. Delivery failures never fail the document."""
        try:
            payload = build_notification_payload(change, document, document.vendor, self.base_url)
            self.dispatcher.dispatch(payload)
        except Exception as e:
            logger.error(f"Notification failed for change {change.id}: {e}")
            return
        try:
            self.repository.update_change(change.id, notified=True)
            self.repository.commit()
        except PersistenceError as e:
            logger.error(f"Change {change.id} was dispatched but not marked notified: {e}")
            self.repository.rollback()

    def _outcome(self, ctx: CheckContext, status: OutcomeStatus, **fields: Any) -> DocumentOutcome:
        return DocumentOutcome(ctx.document.display_name, ctx.document.id, status, **fields)

    def _load_change_snapshots(self, change_id: str):
        change = self.repository.get_change(change_id)
        if change is None:
            raise ChangeNotFoundError(f"Change {change_id} not found")
        old_snapshot = self.repository.get_snapshot(change.old_snapshot_id)
        new_snapshot = self.repository.get_snapshot(change.new_snapshot_id)
        if old_snapshot is None or new_snapshot is None:
            raise SnapshotNotFoundError(f"Snapshots for change {change_id} not found")
        return change, old_snapshot, new_snapshot

    def diff_for_change(self, change_id: str) -> Diff:
        """Recompute the sentence diff for a stored change."""
        _, old_snapshot, new_snapshot = self._load_change_snapshots(change_id)
        return diff(old_snapshot.content or "", new_snapshot.content or "")

    def reanalyze_change(self, change_id: str) -> ReanalysisResult:
        """Re-run analysis for an existing change and overwrite its analysis fields.

        Snapshot references, ``detected_at`` and ``notified`` are left as they are.
        A fallback answer never replaces an analysis the model completed earlier;
        the result then carries the stored fields with ``analysis_failed`` set.
        """
        change, old_snapshot, new_snapshot = self._load_change_snapshots(change_id)
        if not old_snapshot.content or not new_snapshot.content:
            raise EmptySnapshotError(f"Snapshot content missing for change {change_id}")

        change_diff = diff(old_snapshot.content, new_snapshot.content)
        if change_diff.is_empty:
            raise EmptyDiffError(f"No sentence differences for change {change_id}")

        document = self.repository.get_document(change.document_id)
        label = document.display_name if document else "Unknown"

        analysis = self.analyzer.analyze(
            label,
            change_diff.added,
            change_diff.removed,
            effective_date=extract_effective_date(new_snapshot.content),
        )
        risk_level, priority = normalize_noise(analysis)

        if analysis.analysis_failed and not change.analysis_failed:
            logger.warning(f"Re-analysis of change {change.id} failed, keeping the stored analysis")
            return ReanalysisResult(
                change_id=change.id,
                summary=change.summary,
                risk_level=change.risk_level,
                risk_priority=change.risk_priority,
                is_noise=bool(change.is_noise),
                analysis_failed=True,
            )

        self.repository.update_change(
            change.id,
            summary=analysis.summary,
            impact=analysis.impact,
            action=analysis.action,
            risk_level=risk_level,
            risk_bucket=analysis.risk_bucket,
            risk_priority=priority.value,
            categories=analysis.categories,
            is_noise=analysis.is_noise,
            analysis_failed=analysis.analysis_failed,
        )
        self.repository.commit()
        logger.info(f"Re-analyzed change {change.id} for '{label}': {risk_level}")

        return ReanalysisResult(
            change_id=change.id,
            summary=analysis.summary,
            risk_level=risk_level,
            risk_priority=priority.value,
            is_noise=analysis.is_noise,
            analysis_failed=analysis.analysis_failed,
        )


def build_pipeline(session: Session, settings: Settings) -> ChangePipeline:
    """Wire the production pipeline for one session."""
    analyzer = SemanticAnalyzer(
        LLMClient(settings),
        retry_delay_seconds=settings.llm_retry_delay_seconds,
    )
    return ChangePipeline(
        repository=PostgresPolicyRepository(session),
        fetcher=ContentFetcher(settings),
        analyzer=analyzer,
        dispatcher=LoggingNotificationDispatcher(),
        policy=SafetyNetPolicy.from_settings(settings),
        base_url=settings.app_base_url,
    )
