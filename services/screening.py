"""
Rule-based scoring of donor intake submissions.

Each active screening rule compares one field of a submission (or a value
derived from it, such as age or BMI) against a configured value. Triggered
rules become flags; the flags decide the score and the recommendation that
reviewers see on the approval queue.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

OPERATORS = ("gt", "gte", "lt", "lte", "eq", "neq")
RULE_TYPES = ("hard_disqualify", "soft_flag", "threshold")
SEVERITIES = ("low", "medium", "high", "critical")

CALCULATED_PREFIX = "calculated_"
CALCULATED_FIELDS = ("calculated_age", "calculated_bmi")

# Submission answers a rule may point at
SUBMISSION_FIELDS = (
    "has_blood_disorder",
    "has_chronic_illness",
    "had_surgery",
    "has_tattoos_piercings",
    "has_been_incarcerated",
    "has_traveled_internationally",
    "has_received_transfusion",
    "has_been_pregnant",
    "takes_medications",
    "weight",
    "height_feet",
    "height_inches",
    "assigned_sex",
    "state",
)

SEVERITY_DEDUCTIONS = {
    "critical": 25,
    "high": 15,
    "medium": 10,
    "low": 5,
}
DEFAULT_DEDUCTION = 5

HARD_DISQUALIFY_SCORE = 15
REVIEW_BASE_SCORE = 85
REVIEW_MIN_SCORE = 40
SUITABLE_SCORE = 95


def _to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def calculate_age(birth_date: Any, today: date) -> Optional[int]:
    born = _to_date(birth_date)
    if born is None:
        return None
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


def calculate_bmi(height_feet: Any, height_inches: Any, weight: Any) -> Optional[float]:
    """Imperial BMI (lb / in² * 703) rounded to one decimal place."""
    if not height_feet or not weight:
        return None
    total_inches = float(height_feet) * 12 + float(height_inches or 0)
    if total_inches <= 0:
        return None
    bmi = (float(weight) / (total_inches * total_inches)) * 703
    return round(bmi, 1)


def derive_fields(submission: dict, today: date) -> dict:
    derived = {}

    age = calculate_age(submission.get("birth_date"), today)
    if age is not None:
        derived["calculated_age"] = age

    bmi = calculate_bmi(
        submission.get("height_feet"),
        submission.get("height_inches"),
        submission.get("weight"),
    )
    if bmi is not None:
        derived["calculated_bmi"] = bmi

    return derived


def is_number(value: Any) -> bool:
    # bool is an int subclass, but a yes/no answer is never a quantity
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    if is_number(actual) and is_number(expected):
        return actual == expected
    return type(actual) is type(expected) and actual == expected


def rule_triggered(operator: str, actual: Any, expected: Any) -> bool:
    if operator in ("gt", "gte", "lt", "lte"):
        if not is_number(actual) or not is_number(expected):
            return False
        if operator == "gt":
            return actual > expected
        if operator == "gte":
            return actual >= expected
        if operator == "lt":
            return actual < expected
        return actual <= expected

    if operator == "eq":
        return _strict_equal(actual, expected)
    if operator == "neq":
        return not _strict_equal(actual, expected)

    logger.warning("Unknown screening operator: %s", operator)
    return False


def field_value(rule: dict, submission: dict, derived: dict) -> Any:
    field_path = rule.get("field_path") or ""
    if field_path.startswith(CALCULATED_PREFIX):
        return derived.get(field_path)
    return submission.get(field_path)


def collect_flags(rules: Iterable[dict], submission: dict, derived: dict) -> list[dict]:
    flags = []
    for rule in rules:
        actual = field_value(rule, submission, derived)
        if actual is None:
            continue

        config = rule.get("rule_value") or {}
        if not rule_triggered(config.get("operator"), actual, config.get("value")):
            continue

        logger.info("Rule triggered: %s (%s)", rule.get("rule_name"), rule.get("rule_type"))
        flags.append(
            {
                "rule_key": rule.get("rule_key"),
                "rule_name": rule.get("rule_name"),
                "severity": rule.get("severity"),
                "message": rule.get("description"),
                "rule_type": rule.get("rule_type"),
                "actual_value": actual,
            }
        )
    return flags


def score_flags(flags: list[dict]) -> tuple[int, str, str]:
    """Return (score, recommendation, summary) for a set of triggered flags."""
    hard_flags = [f for f in flags if f["rule_type"] == "hard_disqualify"]
    if hard_flags:
        names = ", ".join(f["rule_name"] for f in hard_flags)
        return (
            HARD_DISQUALIFY_SCORE,
            "unsuitable",
            f"Automatically disqualified due to: {names}.",
        )

    if flags:
        deduction = sum(SEVERITY_DEDUCTIONS.get(f["severity"], DEFAULT_DEDUCTION) for f in flags)
        names = ", ".join(f["rule_name"] for f in flags)
        return (
            max(REVIEW_MIN_SCORE, REVIEW_BASE_SCORE - deduction),
            "review_required",
            f"{len(flags)} flag(s) require manual review: {names}.",
        )

    return (
        SUITABLE_SCORE,
        "suitable",
        "No flags triggered. Submission appears suitable for donor approval.",
    )


def evaluate_submission(submission: dict, rules: Iterable[dict], today: Optional[date] = None) -> dict:
    """Apply rules in order and aggregate the result into an evaluation record."""
    now = datetime.now(timezone.utc)
    today = today or now.date()

    derived = derive_fields(submission, today)
    flags = collect_flags(rules, submission, derived)
    score, recommendation, summary = score_flags(flags)

    return {
        "score": score,
        "recommendation": recommendation,
        "flags": flags,
        "summary": summary,
        "evaluated_at": now.isoformat(),
    }


def build_ai_prompt(submission: dict, derived: dict, flags: list[dict]) -> str:
    flagged = "\n".join(
        f"- {f['rule_name']}: {f['actual_value']} ({f['severity']} severity)" for f in flags
    )
    details = [
        ("Chronic illness", submission.get("chronic_illness_details")),
        ("Surgery", submission.get("surgery_details")),
        ("Medications", submission.get("medication_details")),
        ("Travel", submission.get("travel_details")),
    ]
    detail_lines = "\n".join(f"{label}: {text}" for label, text in details if text)

    return (
        "Evaluate this donor submission:\n"
        f"Age: {derived.get('calculated_age') or 'Unknown'}\n"
        f"BMI: {derived.get('calculated_bmi') or 'Unknown'}\n"
        f"Sex: {submission.get('assigned_sex')}\n\n"
        f"Flagged conditions:\n{flagged}\n\n"
        f"Additional details from submission:\n{detail_lines}\n\n"
        "Provide your assessment."
    )
