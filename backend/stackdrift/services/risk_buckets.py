"""Risk bucket definitions used to classify policy changes.

The table is an immutable value so callers (and tests) can pass their own
bucket definitions instead of patching module state.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Literal, Mapping

RiskLevel = Literal["low", "medium", "high"]


class RiskBucket(str, Enum):
    OWNERSHIP = "ownership"
    TRAINING = "training"
    VISIBILITY = "visibility"
    EXPORT = "export"
    PRICING = "pricing"
    DEPRECATION = "deprecation"


class RiskPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class RiskBucketConfig:
    """Display and matching configuration for one risk bucket."""
    name: str
    priority: RiskPriority
    color: str
    description: str
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class RiskBucketTable:
    """Bucket configs plus the order used to pick a primary bucket."""
    buckets: Mapping[RiskBucket, RiskBucketConfig]
    priority_order: tuple[RiskBucket, ...] = field(default=())

    def __post_init__(self):
        # Freeze the mapping so a shared table cannot be mutated in place
        object.__setattr__(self, "buckets", MappingProxyType(dict(self.buckets)))

    def __getitem__(self, bucket: RiskBucket) -> RiskBucketConfig:
        return self.buckets[bucket]

    def __iter__(self):
        return iter(self.buckets)


# Legacy severity scheme: critical and high collapse into "high"
_PRIORITY_TO_RISK_LEVEL: dict[RiskPriority, RiskLevel] = {
    RiskPriority.CRITICAL: "high",
    RiskPriority.HIGH: "high",
    RiskPriority.MEDIUM: "medium",
    RiskPriority.LOW: "low",
}


def bucket_priority_to_risk_level(priority: RiskPriority) -> RiskLevel:
    """Map a bucket priority to the coarser low/medium/high risk level."""
    return _PRIORITY_TO_RISK_LEVEL[RiskPriority(priority)]


DEFAULT_PRIORITY_ORDER: tuple[RiskBucket, ...] = (
    RiskBucket.OWNERSHIP,
    RiskBucket.TRAINING,
    RiskBucket.DEPRECATION,
    RiskBucket.VISIBILITY,
    RiskBucket.EXPORT,
    RiskBucket.PRICING,
)

DEFAULT_RISK_BUCKETS = RiskBucketTable(
    buckets={
        RiskBucket.OWNERSHIP: RiskBucketConfig(
            name="Ownership & IP",
            priority=RiskPriority.CRITICAL,
            color="red",
            description="Who owns generated code",
            keywords=(
                "ownership of output",
                "generated code",
                "derivative works",
                "intellectual property",
                "license to use",
                "license to modify",
                "license to distribute",
                "non-exclusive",
                "perpetual",
                "royalty-free",
                "you grant us",
                "you own",
                "we own",
                "retain ownership",
                "assign",
                "transfer",
                "work product",
                "created content",
                "user content",
                "your content",
                "liability",
            ),
        ),
        RiskBucket.TRAINING: RiskBucketConfig(
            name="Training & Data Reuse",
            priority=RiskPriority.HIGH,
            color="orange",
            description="Whether your code trains their models",
            keywords=(
                "training",
                "train our models",
                "improve our models",
                "machine learning",
                "aggregate data",
                "content submitted",
                "usage data",
                "telemetry",
                "feedback",
                "anonymized",
                "opt-out",
                "opt out",
                "model improvement",
                "ai training",
                "learning from",
            ),
        ),
        RiskBucket.VISIBILITY: RiskBucketConfig(
            name="Project Visibility",
            priority=RiskPriority.HIGH,
            color="yellow",
            description="Project privacy defaults",
            keywords=(
                "public",
                "private",
                "visibility",
                "default",
                "shared",
                "workspace",
                "collaborators",
                "gallery",
                "showcase",
                "discoverable",
                "searchable",
                "publicly available",
                "made public",
            ),
        ),
        RiskBucket.EXPORT: RiskBucketConfig(
            name="Export & Lock-in",
            priority=RiskPriority.MEDIUM,
            color="blue",
            description="Can you leave the platform",
            keywords=(
                "export",
                "download",
                "self-host",
                "self host",
                "deployment",
                "deploy",
                "third-party hosting",
                "source code access",
                "restrictions",
                "limitations",
                "portability",
                "lock-in",
                "migration",
                "transfer out",
            ),
        ),
        RiskBucket.PRICING: RiskBucketConfig(
            name="Usage & Commercial",
            priority=RiskPriority.MEDIUM,
            color="purple",
            description="Pricing enforcement and limits",
            keywords=(
                "commercial use",
                "production use",
                "fair use",
                "credits",
                "rate limit",
                "usage-based",
                "overage",
                "limits",
                "quota",
                "throttle",
                "subscription",
                "billing",
                "pricing",
                "plan",
                "tier",
            ),
        ),
        RiskBucket.DEPRECATION: RiskBucketConfig(
            name="Deprecation & Retirement",
            priority=RiskPriority.HIGH,
            color="orange",
            description="Model or API version retirements and migration deadlines",
            keywords=(
                "deprecated",
                "deprecation",
                "retirement",
                "retired",
                "end of life",
                "end-of-life",
                "sunset",
                "sunsetted",
                "discontinued",
                "replaced by",
                "migration required",
                "no longer available",
                "no longer supported",
                "shutting down",
                "will be removed",
                "breaking change",
                "legacy",
            ),
        ),
    },
    priority_order=DEFAULT_PRIORITY_ORDER,
)
