"""Business logic services."""

from stackdrift.services.analyzer import Analysis, SemanticAnalyzer
from stackdrift.services.classifier import KeywordClassifier
from stackdrift.services.fetcher import ContentFetcher, FetchError
from stackdrift.services.pipeline import ChangePipeline, build_pipeline
from stackdrift.services.safety_nets import OutcomeStatus, SafetyNetPolicy

__all__ = [
    "Analysis",
    "SemanticAnalyzer",
    "KeywordClassifier",
    "ContentFetcher",
    "FetchError",
    "ChangePipeline",
    "build_pipeline",
    "OutcomeStatus",
    "SafetyNetPolicy",
]
