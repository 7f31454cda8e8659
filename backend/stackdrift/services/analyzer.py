"""LLM-assisted risk assessment of policy diffs.

The keyword classifier always runs first. Its buckets are handed to the model
as context, and its result becomes the answer when the model call fails, so
``SemanticAnalyzer.analyze`` never raises.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stackdrift.prompts import POLICY_CHANGE_PROMPT
from stackdrift.services.classifier import Classification, KeywordClassifier
from stackdrift.services.llm_client import LLMCallError
from stackdrift.services.risk_buckets import RiskLevel, RiskPriority

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "Policy change detected. Review the document for details."
FALLBACK_IMPACT = "Unable to assess impact. Review the document manually."
FALLBACK_ACTION = "Review the linked document for details."

MAX_DIFF_CHARS = 12_000
TRUNCATED_SIDE_CHARS = 5_000

MAX_ATTEMPTS = 2


class AnalysisError(Exception):
    """The model answered, but not with a usable assessment."""


class CompletionClient(Protocol):
    def complete(self, prompt: str) -> str: ...


class PolicyAssessment(BaseModel):
    """The JSON object the model is asked to return."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str = Field(min_length=1)
    impact: str = ""
    action: str = ""
    suggested_risk_level: RiskLevel = Field(alias="suggestedRiskLevel")
    is_noise: bool = Field(default=False, alias="isNoise")

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary is blank")
        return value.strip()

    @field_validator("impact", "action", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or ""

    @field_validator("suggested_risk_level", mode="before")
    @classmethod
    def _normalize_level(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            # Older prompt versions allowed a fourth level
            if value == "critical":
                return "high"
        return value


@dataclass
class Analysis:
    """Outcome of analyzing one diff."""
    summary: str
    impact: str
    action: str
    risk_level: RiskLevel
    risk_priority: RiskPriority
    risk_bucket: str | None
    categories: list[str] = field(default_factory=list)
    title: str = ""
    is_noise: bool = False
    analysis_failed: bool = False


def resolve_risk_level(
    assessment: PolicyAssessment | None,
    classification: Classification,
) -> RiskLevel:
    """Pick the final risk level: the model's judgment when present, else keywords.

    Keyword matching cannot tell a translation from a substantive rewrite, so
    once the model has answered its level wins outright.
    """
    if assessment is None:
        return classification.risk_level
    return assessment.suggested_risk_level


_RISK_LEVEL_TO_PRIORITY: dict[str, RiskPriority] = {
    "high": RiskPriority.CRITICAL,
    "medium": RiskPriority.MEDIUM,
    "low": RiskPriority.LOW,
}


def risk_level_to_priority(level: RiskLevel) -> RiskPriority:
    """Derive dashboard priority from a model-assessed risk level."""
    return _RISK_LEVEL_TO_PRIORITY[level]


def extract_json(raw: str) -> str:
    """Extract a JSON object from a response that may be wrapped in code fences."""
    fenced = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", raw, re.S)
    if fenced:
        return fenced.group(1).strip()
    braces = re.search(r"\{.*\}", raw, re.S)
    if braces:
        return braces.group(0)
    return raw.strip()


def _truncate_lines(lines: list[str], limit: int) -> list[str]:
    result = []
    chars = 0
    for line in lines:
        if chars + len(line) > limit:
            break
        result.append(line)
        chars += len(line)
    return result


class SemanticAnalyzer:
    """Assess policy diffs with an LLM, falling back to keyword classification."""

    def __init__(
        self,
        llm_client: CompletionClient,
        classifier: KeywordClassifier | None = None,
        risk_resolver: Callable[[PolicyAssessment | None, Classification], RiskLevel] = resolve_risk_level,
        retry_delay_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.llm_client = llm_client
        self.classifier = classifier or KeywordClassifier()
        self.risk_resolver = risk_resolver
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def build_prompt(
        self,
        document_label: str,
        added: list[str],
        removed: list[str],
        classification: Classification,
        effective_date: str | None = None,
    ) -> str:
        """Format the policy-change prompt, truncating oversized diffs."""
        total_chars = sum(len(s) for s in added) + sum(len(s) for s in removed)
        truncation_note = ""
        if total_chars > MAX_DIFF_CHARS:
            logger.warning(
                f"Diff for '{document_label}' is {total_chars} chars, "
                f"truncating to ~{TRUNCATED_SIDE_CHARS * 2} chars"
            )
            added = _truncate_lines(added, TRUNCATED_SIDE_CHARS)
            removed = _truncate_lines(removed, TRUNCATED_SIDE_CHARS)
            truncation_note = (
                f"\n\n[Diff truncated: showing the first ~{TRUNCATED_SIDE_CHARS} chars of each "
                f"section out of {total_chars} total chars. Focus on the visible changes.]"
            )

        effective_date_line = (
            f"\nDocument effective/update date: {effective_date}\n" if effective_date else ""
        )

        return POLICY_CHANGE_PROMPT.format(
            document_label=document_label,
            added_sentences="\n".join(f"+ {s}" for s in added) or "(none)",
            removed_sentences="\n".join(f"- {s}" for s in removed) or "(none)",
            truncation_note=truncation_note,
            effective_date_line=effective_date_line,
            detected_buckets=self.classifier.describe_buckets(classification.buckets),
        )

    def parse_response(self, raw: str) -> PolicyAssessment:
        """Parse and validate the model's JSON answer."""
        try:
            data = json.loads(extract_json(raw))
        except json.JSONDecodeError as e:
            raise AnalysisError(f"Model returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise AnalysisError("Model returned JSON that is not an object")
        try:
            return PolicyAssessment.model_validate(data)
        except ValidationError as e:
            raise AnalysisError(f"Model returned incomplete assessment: {e.error_count()} errors") from e

    def _assess(self, document_label: str, prompt: str) -> PolicyAssessment | None:
        """Call the model with one retry on transient errors. None on failure."""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                raw = self.llm_client.complete(prompt)
                logger.debug(f"Raw model response for '{document_label}': {raw[:500]}")
                return self.parse_response(raw)
            except LLMCallError as e:
                logger.error(
                    f"LLM call failed for '{document_label}' "
                    f"(attempt {attempt}/{MAX_ATTEMPTS}, status={e.status_code}): {e}"
                )
                if e.retryable and attempt < MAX_ATTEMPTS:
                    logger.info(f"Retrying '{document_label}' in {self.retry_delay_seconds}s")
                    self._sleep(self.retry_delay_seconds)
                    continue
                return None
            except AnalysisError as e:
                logger.error(f"Unusable model response for '{document_label}': {e}")
                return None
            except Exception as e:
                logger.exception(f"Unexpected analyzer failure for '{document_label}': {e}")
                return None
        return None

    def analyze(
        self,
        document_label: str,
        added: list[str],
        removed: list[str],
        effective_date: str | None = None,
    ) -> Analysis:
        """Analyze a diff. Always returns an Analysis."""
        classification = self.classifier.classify("\n".join(added), "\n".join(removed))
        title = self.classifier.alert_title(document_label, classification.primary_bucket)
        bucket = classification.primary_bucket.value if classification.primary_bucket else None

        try:
            prompt = self.build_prompt(document_label, added, removed, classification, effective_date)
            assessment = self._assess(document_label, prompt)
        except Exception as e:
            logger.exception(f"Failed to build prompt for '{document_label}': {e}")
            assessment = None

        if assessment is None:
            logger.error(f"All attempts failed for '{document_label}', using keyword classification")
            return Analysis(
                summary=FALLBACK_SUMMARY,
                impact=FALLBACK_IMPACT,
                action=FALLBACK_ACTION,
                risk_level=classification.risk_level,
                risk_priority=classification.priority,
                risk_bucket=bucket,
                categories=classification.categories,
                title=title,
                is_noise=False,
                analysis_failed=True,
            )

        risk_level = self.risk_resolver(assessment, classification)
        priority = risk_level_to_priority(risk_level)
        logger.info(
            f"'{document_label}' -> model: suggestedRiskLevel={assessment.suggested_risk_level}, "
            f"isNoise={assessment.is_noise} -> stored: risk_level={risk_level}, "
            f"risk_priority={priority.value}"
        )

        return Analysis(
            summary=assessment.summary,
            impact=assessment.impact,
            action=assessment.action,
            risk_level=risk_level,
            risk_priority=priority,
            risk_bucket=bucket,
            categories=classification.categories,
            title=title,
            is_noise=assessment.is_noise,
            analysis_failed=False,
        )
