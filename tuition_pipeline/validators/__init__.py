"""
Validators for extracted tuition data.

This module provides:
- Math and plausibility rule checks (pure, deterministic)
- Source URL deduplication and classification
"""

from .math_validator import (
    check_calculation,
    check_completeness,
    check_plausibility,
    check_recency,
    completeness_score,
    run_rule_checks,
)
from .source_validator import (
    SourceReport,
    classify_source,
    domain_matches_school,
    validate_sources,
)

__all__ = [
    "SourceReport",
    "check_calculation",
    "check_completeness",
    "check_plausibility",
    "check_recency",
    "classify_source",
    "completeness_score",
    "domain_matches_school",
    "run_rule_checks",
    "validate_sources",
]
