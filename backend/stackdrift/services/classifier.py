"""Keyword-based risk bucket classifier (no LLM calls).

Deterministically maps diff text to risk buckets and a priority floor. The
semantic analyzer passes this result to the model as context and falls back
to it when the model call fails.
"""

from dataclasses import dataclass, field

from stackdrift.services.risk_buckets import (
    DEFAULT_RISK_BUCKETS,
    RiskBucket,
    RiskBucketTable,
    RiskLevel,
    RiskPriority,
    bucket_priority_to_risk_level,
)


@dataclass(frozen=True)
class Classification:
    """Result of keyword classification for one diff."""
    buckets: list[RiskBucket] = field(default_factory=list)
    primary_bucket: RiskBucket | None = None
    priority: RiskPriority = RiskPriority.LOW
    risk_level: RiskLevel = "low"

    @property
    def categories(self) -> list[str]:
        """Bucket values for storage."""
        return [b.value for b in self.buckets]


class KeywordClassifier:
    """Classify policy text into risk buckets using keyword substrings."""

    def __init__(self, table: RiskBucketTable = DEFAULT_RISK_BUCKETS):
        self.table = table

    def detect_buckets(self, text: str) -> list[RiskBucket]:
        """Return every bucket with at least one keyword present in the text."""
        lowered = text.lower()
        matched = []
        for bucket, config in self.table.buckets.items():
            if any(keyword.lower() in lowered for keyword in config.keywords):
                matched.append(bucket)
        return matched

    def primary_bucket(self, buckets: list[RiskBucket]) -> RiskBucket | None:
        """Pick the highest-priority bucket from a set of matches."""
        if not buckets:
            return None
        for bucket in self.table.priority_order:
            if bucket in buckets:
                return bucket
        # Matched buckets missing from the order table
        return buckets[0]

    def classify(self, added_text: str, removed_text: str) -> Classification:
        """Classify a change from its added and removed text."""
        buckets = self.detect_buckets(f"{added_text}\n{removed_text}")
        primary = self.primary_bucket(buckets)

        priority = self.table[primary].priority if primary else RiskPriority.LOW

        return Classification(
            buckets=buckets,
            primary_bucket=primary,
            priority=priority,
            risk_level=bucket_priority_to_risk_level(priority),
        )

    def describe_buckets(self, buckets: list[RiskBucket]) -> str:
        """Bullet list of bucket names and descriptions for prompts."""
        if not buckets:
            return "No specific risk categories detected from keywords."
        return "\n".join(
            f"- {self.table[b].name}: {self.table[b].description}" for b in buckets
        )

    def alert_title(self, display_name: str, bucket: RiskBucket | None) -> str:
        """Generate an alert title from the document name and primary bucket."""
        if bucket is None:
            return f"{display_name} – Policy updated"
        return f"{display_name} – {self.table[bucket].name} change detected"
