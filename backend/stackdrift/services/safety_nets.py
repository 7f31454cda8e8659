"""Safety nets that keep spurious diffs from becoming alerts.

Each guard is a predicate over the ``CheckContext`` that returns ``None`` to
continue or a terminal ``OutcomeStatus``. ``SAFETY_NETS`` is the single ordered
list of guards; the pipeline runs the guards registered for a stage once it
reaches that stage, and the first terminal status stops the document.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import cached_property
from typing import Callable

from stackdrift.config import Settings
from stackdrift.models import Document, Snapshot
from stackdrift.services.analyzer import Analysis
from stackdrift.services.differ import Diff, diff, split_sentences
from stackdrift.services.risk_buckets import RiskLevel, RiskPriority


class OutcomeStatus(str, Enum):
    """Per-document result of one pipeline run."""

    CHANGED = "changed"
    NOISE = "noise"
    NO_CHANGE = "no_change"
    INITIAL_SNAPSHOT = "initial_snapshot"
    FETCH_EMPTY = "fetch_empty"
    STALE_BASELINE_RESET = "stale_baseline_reset"
    FULL_REPLACEMENT = "full_replacement_baseline"
    FIRST_SCAN_CALIBRATION = "first_scan_calibration"
    ERROR = "error"


class Stage(str, Enum):
    """Points in the pipeline at which guards run."""

    FETCHED = "fetched"
    FINGERPRINTED = "fingerprinted"
    SNAPSHOT_SAVED = "snapshot_saved"
    ANALYZED = "analyzed"


@dataclass(frozen=True)
class SafetyNetPolicy:
    """Tunable thresholds. Every comparison is strict (``>`` / ``<``)."""
    min_content_length: int = 200
    stale_baseline_age: timedelta = timedelta(days=30)
    full_replacement_ratio: float = 0.8
    full_replacement_min_sentences: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "SafetyNetPolicy":
        return cls(
            min_content_length=settings.min_content_length,
            stale_baseline_age=timedelta(days=settings.stale_baseline_days),
            full_replacement_ratio=settings.full_replacement_ratio,
            full_replacement_min_sentences=settings.full_replacement_min_sentences,
        )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class CheckContext:
    """Everything known about one document as it moves through the pipeline."""
    document: Document
    now: datetime
    content: str = ""
    content_hash: str | None = None
    previous: Snapshot | None = None
    current: Snapshot | None = None
    analysis: Analysis | None = None
    effective_risk_level: RiskLevel | None = None
    effective_priority: RiskPriority | None = None
    prior_change_count: int | None = None
    extra: dict = field(default_factory=dict)

    @cached_property
    def diff(self) -> Diff:
        old_content = self.previous.content if self.previous else ""
        return diff(old_content or "", self.content)

    @cached_property
    def total_sentences(self) -> int:
        old_content = self.previous.content if self.previous else ""
        return max(len(split_sentences(old_content or "")), len(split_sentences(self.content)))

    @property
    def change_ratio(self) -> float:
        total = self.total_sentences
        return self.diff.changed_count / total if total > 0 else 0.0

    @property
    def baseline_age(self) -> timedelta | None:
        if self.previous is None or self.previous.fetched_at is None:
            return None
        return self.now - _as_utc(self.previous.fetched_at)

    @property
    def is_noise(self) -> bool:
        return bool(self.analysis and self.analysis.is_noise)


Guard = Callable[[CheckContext, SafetyNetPolicy], OutcomeStatus | None]


def empty_content_guard(ctx: CheckContext, policy: SafetyNetPolicy) -> OutcomeStatus | None:
    """Blocked or error pages must not overwrite the baseline."""
    if len(ctx.content) < policy.min_content_length:
        return OutcomeStatus.FETCH_EMPTY
    return None


def unchanged_guard(ctx: CheckContext, policy: SafetyNetPolicy) -> OutcomeStatus | None:
    if ctx.previous is not None and ctx.previous.content_hash == ctx.content_hash:
        return OutcomeStatus.NO_CHANGE
    return None


def first_snapshot_guard(ctx: CheckContext, policy: SafetyNetPolicy) -> OutcomeStatus | None:
    """Nothing to compare against yet; the new snapshot becomes the baseline."""
    if ctx.previous is None:
        return OutcomeStatus.INITIAL_SNAPSHOT
    return None


def stale_baseline_guard(ctx: CheckContext, policy: SafetyNetPolicy) -> OutcomeStatus | None:
    """A diff against a month-old snapshot is not a meaningful change signal."""
    age = ctx.baseline_age
    if age is not None and age > policy.stale_baseline_age:
        return OutcomeStatus.STALE_BASELINE_RESET
    return None


def full_replacement_guard(ctx: CheckContext, policy: SafetyNetPolicy) -> OutcomeStatus | None:
    """Page redesigns and language swaps change nearly every sentence."""
    if (
        ctx.change_ratio > policy.full_replacement_ratio
        and ctx.diff.changed_count > policy.full_replacement_min_sentences
    ):
        return OutcomeStatus.FULL_REPLACEMENT
    return None


def first_scan_guard(ctx: CheckContext, policy: SafetyNetPolicy) -> OutcomeStatus | None:
    """Suppress a document's very first diff when it is noise or low risk."""
    if ctx.prior_change_count != 0:
        return None
    if ctx.is_noise or ctx.effective_risk_level == "low":
        return OutcomeStatus.FIRST_SCAN_CALIBRATION
    return None


def normalize_noise(analysis: Analysis) -> tuple[RiskLevel, RiskPriority]:
    """Noise is always low risk, whatever level the model stated."""
    if analysis.is_noise:
        return "low", RiskPriority.LOW
    return analysis.risk_level, RiskPriority(analysis.risk_priority)


@dataclass(frozen=True)
class SafetyNet:
    stage: Stage
    guard: Guard

    @property
    def name(self) -> str:
        return self.guard.__name__


SAFETY_NETS: tuple[SafetyNet, ...] = (
    SafetyNet(Stage.FETCHED, empty_content_guard),
    SafetyNet(Stage.FINGERPRINTED, unchanged_guard),
    SafetyNet(Stage.SNAPSHOT_SAVED, first_snapshot_guard),
    SafetyNet(Stage.SNAPSHOT_SAVED, stale_baseline_guard),
    SafetyNet(Stage.SNAPSHOT_SAVED, full_replacement_guard),
    SafetyNet(Stage.ANALYZED, first_scan_guard),
)


def run_safety_nets(
    stage: Stage,
    ctx: CheckContext,
    policy: SafetyNetPolicy,
    nets: tuple[SafetyNet, ...] = SAFETY_NETS,
) -> OutcomeStatus | None:
    """Run the guards for a stage in order; return the first terminal status."""
    for net in nets:
        if net.stage != stage:
            continue
        status = net.guard(ctx, policy)
        if status is not None:
            return status
    return None
