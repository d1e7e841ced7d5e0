"""
Math and plausibility checks for extracted tuition data.

Four independent checks run over the candidate's fields. Each contributes
issues and validations; the verifier passes only if all four pass.

1. Calculation: cost_per_credit x total_credits against tuition_amount
2. Plausibility: tuition, cost per credit and credit ranges
3. Recency: academic year inside [current_year - 1, current_year + 1]
4. Completeness: weighted share of required/important/optional fields

Usage:
    from tuition_pipeline.validators.math_validator import run_rule_checks

    verdict = run_rule_checks(candidate, current_year=2026)
    verdict.passed             # False if any check has an ERROR issue
    verdict.completeness_score # 0-100

Design:
    - Pure functions: same candidate and year give the same verdict
    - Missing numeric fields skip the checks that need them; completeness
      accounts for them instead
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from ..constants import (
    CALCULATION_MATCH_TOLERANCE,
    CALCULATION_MINOR_TOLERANCE,
    COST_PER_CREDIT_MAX,
    COST_PER_CREDIT_MIN,
    IMPORTANT_FIELDS,
    IMPORTANT_WEIGHT,
    OPTIONAL_FIELDS,
    OPTIONAL_WEIGHT,
    REQUIRED_FIELDS,
    REQUIRED_WEIGHT,
    TOTAL_CREDITS_MAX,
    TOTAL_CREDITS_MIN,
    TUITION_MAX,
    TUITION_MIN,
)
from ..models.extraction import ExtractionCandidate
from ..models.verification import CheckResult, IssueCode, RuleVerdict, Severity, ValidationIssue
from ..utils.text import is_missing

CALCULATION_CHECK = "calculation"
PLAUSIBILITY_CHECK = "plausibility"
RECENCY_CHECK = "recency"
COMPLETENESS_CHECK = "completeness"

_YEAR_RE = re.compile(r"(\d{4})")


def _money(value: float) -> str:
    if float(value).is_integer():
        return f"${value:,.0f}"
    return f"${value:,.2f}"


def _number(value: float) -> str:
    return f"{value:.0f}" if float(value).is_integer() else f"{value:g}"


def _has_value(value: Any) -> bool:
    """Required/important fields must be present and non-zero."""
    if is_missing(value):
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0:
        return False
    return True


def current_utc_year() -> int:
    return datetime.now(timezone.utc).year


# =============================================================================
# Check 1: calculation
# =============================================================================


def check_calculation(candidate: ExtractionCandidate) -> CheckResult:
    """Compare stated tuition with cost_per_credit x total_credits."""
    result = CheckResult(name=CALCULATION_CHECK)

    tuition = candidate.tuition_amount
    cost_per_credit = candidate.cost_per_credit
    total_credits = candidate.total_credits

    if cost_per_credit and total_credits:
        expected_total = cost_per_credit * total_credits

        if tuition:
            relative_diff = abs(tuition - expected_total) / expected_total
            percent = relative_diff * 100

            if relative_diff <= CALCULATION_MATCH_TOLERANCE:
                result.validations.append(
                    f"Math verified: {_money(cost_per_credit)} × {_number(total_credits)} credits = "
                    f"{_money(expected_total)} (matches stated tuition within 5%)"
                )
            elif relative_diff <= CALCULATION_MINOR_TOLERANCE:
                result.issues.append(
                    ValidationIssue(
                        code=IssueCode.MATH_INCONSISTENCY,
                        severity=Severity.WARNING,
                        message=(
                            f"Minor discrepancy: calculated {_money(expected_total)} vs stated "
                            f"{_money(tuition)} ({percent:.1f}% difference - may include fees)"
                        ),
                        field="tuition_amount",
                    )
                )
            else:
                result.issues.append(
                    ValidationIssue(
                        code=IssueCode.MATH_INCONSISTENCY,
                        severity=Severity.ERROR,
                        message=(
                            f"Significant discrepancy: calculated {_money(expected_total)} vs stated "
                            f"{_money(tuition)} ({percent:.1f}% difference)"
                        ),
                        field="tuition_amount",
                    )
                )
    elif tuition and not cost_per_credit and not total_credits:
        result.issues.append(
            ValidationIssue(
                code=IssueCode.INCOMPLETE,
                severity=Severity.WARNING,
                message="Cannot verify calculation: missing cost_per_credit and total_credits",
            )
        )

    return result


# =============================================================================
# Check 2: range plausibility
# =============================================================================


def check_plausibility(candidate: ExtractionCandidate) -> CheckResult:
    """Range checks for graduate program tuition, cost per credit and credits.

    Tuition below the minimum fails the check; every other excursion is an issue only.
    """
    result = CheckResult(name=PLAUSIBILITY_CHECK)

    tuition = candidate.tuition_amount
    if tuition is not None:
        if tuition < TUITION_MIN:
            result.issues.append(
                ValidationIssue(
                    code=IssueCode.RANGE_IMPLAUSIBLE,
                    severity=Severity.ERROR,
                    message=f"Tuition {_money(tuition)} seems too low for a graduate program",
                    field="tuition_amount",
                )
            )
        elif tuition > TUITION_MAX:
            result.issues.append(
                ValidationIssue(
                    code=IssueCode.RANGE_IMPLAUSIBLE,
                    severity=Severity.WARNING,
                    message=(
                        f"Tuition {_money(tuition)} seems unusually high - "
                        "verify this is total program cost, not annual"
                    ),
                    field="tuition_amount",
                )
            )
        else:
            result.validations.append(f"Tuition {_money(tuition)} is within plausible range for graduate programs")

    cost_per_credit = candidate.cost_per_credit
    if cost_per_credit is not None:
        if cost_per_credit < COST_PER_CREDIT_MIN:
            result.issues.append(
                ValidationIssue(
                    code=IssueCode.RANGE_IMPLAUSIBLE,
                    severity=Severity.WARNING,
                    message=f"Cost per credit {_money(cost_per_credit)} seems too low",
                    field="cost_per_credit",
                )
            )
        elif cost_per_credit > COST_PER_CREDIT_MAX:
            result.issues.append(
                ValidationIssue(
                    code=IssueCode.RANGE_IMPLAUSIBLE,
                    severity=Severity.WARNING,
                    message=f"Cost per credit {_money(cost_per_credit)} is very high - verify accuracy",
                    field="cost_per_credit",
                )
            )
        else:
            result.validations.append(f"Cost per credit {_money(cost_per_credit)} is within typical range")

    total_credits = candidate.total_credits
    if total_credits is not None:
        if total_credits < TOTAL_CREDITS_MIN:
            result.issues.append(
                ValidationIssue(
                    code=IssueCode.RANGE_IMPLAUSIBLE,
                    severity=Severity.WARNING,
                    message=f"Total credits {_number(total_credits)} seems low for a graduate program",
                    field="total_credits",
                )
            )
        elif total_credits > TOTAL_CREDITS_MAX:
            result.issues.append(
                ValidationIssue(
                    code=IssueCode.RANGE_IMPLAUSIBLE,
                    severity=Severity.WARNING,
                    message=f"Total credits {_number(total_credits)} seems high - verify this is correct",
                    field="total_credits",
                )
            )
        else:
            result.validations.append(f"Total credits {_number(total_credits)} is within typical range")

    return result


# =============================================================================
# Check 3: recency
# =============================================================================


def parse_academic_year(academic_year: Optional[str]) -> Optional[int]:
    """First four-digit year in the text ("2025-2026" -> 2025)."""
    if not academic_year:
        return None
    match = _YEAR_RE.search(academic_year)
    return int(match.group(1)) if match else None


def check_recency(candidate: ExtractionCandidate, current_year: int) -> CheckResult:
    """The academic year must fall within one year of current_year."""
    result = CheckResult(name=RECENCY_CHECK)

    academic_year = candidate.academic_year
    if not academic_year:
        return result

    year = parse_academic_year(academic_year)
    if year is None:
        result.issues.append(
            ValidationIssue(
                code=IssueCode.STALE_YEAR,
                severity=Severity.WARNING,
                message=f"Academic year '{academic_year}' has no recognizable year",
                field="academic_year",
            )
        )
    elif year < current_year - 1:
        result.issues.append(
            ValidationIssue(
                code=IssueCode.STALE_YEAR,
                severity=Severity.ERROR,
                message=f"Academic year {academic_year} may be outdated",
                field="academic_year",
            )
        )
    elif year > current_year + 1:
        result.issues.append(
            ValidationIssue(
                code=IssueCode.STALE_YEAR,
                severity=Severity.ERROR,
                message=f"Academic year {academic_year} is later than expected",
                field="academic_year",
            )
        )
    else:
        result.validations.append(f"Academic year {academic_year} is current")

    return result


# =============================================================================
# Check 4: completeness
# =============================================================================


def completeness_score(required_present: int, important_present: int, optional_present: int) -> int:
    """Weighted completeness on a 0-100 scale, rounded half up.

    Integer arithmetic keeps the rounding exact (weights over a common
    denominator of 12).
    """
    numerator = (
        required_present * REQUIRED_WEIGHT * 12 // len(REQUIRED_FIELDS)
        + important_present * IMPORTANT_WEIGHT * 12 // len(IMPORTANT_FIELDS)
        + optional_present * OPTIONAL_WEIGHT * 12 // len(OPTIONAL_FIELDS)
    )
    return (numerator * 2 + 12) // 24


def check_completeness(candidate: ExtractionCandidate) -> tuple[CheckResult, int]:
    """Field coverage check. Missing any required field fails the check."""
    result = CheckResult(name=COMPLETENESS_CHECK)

    required_present = 0
    for name in REQUIRED_FIELDS:
        if _has_value(getattr(candidate, name)):
            required_present += 1
            result.validations.append(f"Required field present: {name}")
        else:
            result.issues.append(
                ValidationIssue(
                    code=IssueCode.INCOMPLETE,
                    severity=Severity.ERROR,
                    message=f"Missing required field: {name}",
                    field=name,
                )
            )

    missing_important = [name for name in IMPORTANT_FIELDS if not _has_value(getattr(candidate, name))]
    important_present = len(IMPORTANT_FIELDS) - len(missing_important)
    if not missing_important:
        result.validations.append(f"All calculation fields present ({', '.join(IMPORTANT_FIELDS)})")
    elif important_present > 0:
        result.issues.append(
            ValidationIssue(
                code=IssueCode.INCOMPLETE,
                severity=Severity.WARNING,
                message=f"Missing calculation fields: {', '.join(missing_important)}",
            )
        )
    else:
        result.issues.append(
            ValidationIssue(
                code=IssueCode.INCOMPLETE,
                severity=Severity.WARNING,
                message="No calculation fields present - cannot verify total",
            )
        )

    optional_present = sum(1 for name in OPTIONAL_FIELDS if getattr(candidate, name) is not None)

    score = completeness_score(required_present, important_present, optional_present)
    result.validations.append(f"Data completeness score: {score}/100")
    return result, score


def run_rule_checks(candidate: ExtractionCandidate, current_year: Optional[int] = None) -> RuleVerdict:
    """
    Run all four checks.

    Args:
        candidate: Candidate to evaluate
        current_year: Reference year for the recency check (defaults to the UTC year)

    Returns:
        RuleVerdict with per-check results and the completeness score
    """
    if current_year is None:
        current_year = current_utc_year()

    completeness, score = check_completeness(candidate)
    checks = [
        check_calculation(candidate),
        check_plausibility(candidate),
        check_recency(candidate, current_year),
        completeness,
    ]
    return RuleVerdict(checks=checks, completeness_score=score)
