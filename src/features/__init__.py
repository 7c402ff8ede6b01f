"""Feature flags module."""
from src.features.bucketing import MissingSubjectPolicy, bucket
from src.features.engine import evaluate_all, evaluate_flag
from src.features.models import (
    AppData,
    BooleanFlag,
    EvaluationContext,
    EvaluationRequest,
    EvaluationResult,
    FeatureFlag,
    FeatureFlagUpdate,
    FlagKind,
    PayloadFlag,
    SegmentRule,
    VariantFlag,
)
from src.features.rules import matches
from src.features.service import FeatureFlagService
from src.features.store import AppStore

__all__ = [
    "AppData",
    "AppStore",
    "BooleanFlag",
    "EvaluationContext",
    "EvaluationRequest",
    "EvaluationResult",
    "FeatureFlag",
    "FeatureFlagService",
    "FeatureFlagUpdate",
    "FlagKind",
    "MissingSubjectPolicy",
    "PayloadFlag",
    "SegmentRule",
    "VariantFlag",
    "bucket",
    "evaluate_all",
    "evaluate_flag",
    "matches",
]
