"""Column Feature Classifier.

Profiles columns and assigns a role and semantic type to each, using
deterministic rules first and the semantic classifier only for residual
ambiguity.
"""

from schemasense.analysis.features.agent import ColumnClassificationAgent
from schemasense.analysis.features.classifier import ColumnFeatureClassifier, TableClassification
from schemasense.analysis.features.models import (
    AUTO_APPLY_CONFIDENCE,
    FLAGGED_APPLY_CONFIDENCE,
    ColumnFeatures,
    ColumnProfile,
    FeatureBag,
    RuleMatch,
)
from schemasense.analysis.features.patterns import PatternConfig, get_pattern_config
from schemasense.analysis.features.profiler import profile_column, profile_table
from schemasense.analysis.features.rules import classify_path

__all__ = [
    "AUTO_APPLY_CONFIDENCE",
    "FLAGGED_APPLY_CONFIDENCE",
    "ColumnClassificationAgent",
    "ColumnFeatureClassifier",
    "ColumnFeatures",
    "ColumnProfile",
    "FeatureBag",
    "PatternConfig",
    "RuleMatch",
    "TableClassification",
    "classify_path",
    "get_pattern_config",
    "profile_column",
    "profile_table",
]
