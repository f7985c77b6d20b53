# tests/test_screening.py

from __future__ import annotations

from datetime import date

import pytest

from services import screening

TODAY = date(2026, 3, 1)


def rule(key, field_path, operator, value, rule_type="soft_flag", severity="medium"):
    return {
        "rule_key": key,
        "rule_name": key.replace("_", " ").title(),
        "description": f"{key} triggered",
        "field_path": field_path,
        "rule_value": {"operator": operator, "value": value},
        "rule_type": rule_type,
        "severity": severity,
    }


def test_age_counts_birthday_not_yet_reached() -> None:
    assert screening.calculate_age("2000-03-02", TODAY) == 25
    assert screening.calculate_age("2000-03-01", TODAY) == 26
    assert screening.calculate_age(None, TODAY) is None


def test_bmi_uses_imperial_formula_rounded() -> None:
    # 140 lb at 5'6" -> 140 / 66^2 * 703 = 22.59...
    assert screening.calculate_bmi(5, 6, 140) == 22.6
    assert screening.calculate_bmi(5, None, 150) == 29.3
    assert screening.calculate_bmi(None, 6, 140) is None
    assert screening.calculate_bmi(5, 6, 0) is None


def test_no_flags_is_suitable() -> None:
    result = screening.evaluate_submission(
        {"birth_date": "1990-01-01", "has_blood_disorder": False},
        [rule("blood_disorder", "has_blood_disorder", "eq", True, "hard_disqualify", "critical")],
        today=TODAY,
    )
    assert result["score"] == 95
    assert result["recommendation"] == "suitable"
    assert result["flags"] == []
    assert result["summary"] == "No flags triggered. Submission appears suitable for donor approval."
    assert set(result) == {"score", "recommendation", "flags", "summary", "evaluated_at"}


def test_hard_disqualify_wins_over_soft_flags() -> None:
    rules = [
        rule("had_surgery", "had_surgery", "eq", True, "soft_flag", "low"),
        rule("blood_disorder", "has_blood_disorder", "eq", True, "hard_disqualify", "critical"),
    ]
    result = screening.evaluate_submission(
        {"had_surgery": True, "has_blood_disorder": True}, rules, today=TODAY
    )
    assert result["score"] == 15
    assert result["recommendation"] == "unsuitable"
    assert result["summary"] == "Automatically disqualified due to: Blood Disorder."
    assert [f["rule_key"] for f in result["flags"]] == ["had_surgery", "blood_disorder"]


def test_soft_flags_deduct_by_severity() -> None:
    rules = [
        rule("tattoos", "has_tattoos_piercings", "eq", True, severity="high"),
        rule("travel", "has_traveled_internationally", "eq", True, severity="low"),
    ]
    result = screening.evaluate_submission(
        {"has_tattoos_piercings": True, "has_traveled_internationally": True}, rules, today=TODAY
    )
    assert result["score"] == 85 - 15 - 5
    assert result["recommendation"] == "review_required"
    assert result["summary"] == "2 flag(s) require manual review: Tattoos, Travel."


def test_review_score_never_drops_below_floor() -> None:
    rules = [rule(f"r{i}", "had_surgery", "eq", True, severity="critical") for i in range(4)]
    result = screening.evaluate_submission({"had_surgery": True}, rules, today=TODAY)
    assert result["score"] == 40


def test_unknown_severity_deducts_default() -> None:
    result = screening.evaluate_submission(
        {"had_surgery": True},
        [rule("surgery", "had_surgery", "eq", True, severity="unusual")],
        today=TODAY,
    )
    assert result["score"] == 80


def test_calculated_fields_drive_threshold_rules() -> None:
    rules = [
        rule("too_young", "calculated_age", "lt", 18, "hard_disqualify", "critical"),
        rule("high_bmi", "calculated_bmi", "gt", 40, "threshold", "high"),
    ]
    minor = screening.evaluate_submission({"birth_date": "2010-06-01"}, rules, today=TODAY)
    assert minor["recommendation"] == "unsuitable"
    assert minor["flags"][0]["actual_value"] == 15

    heavy = screening.evaluate_submission(
        {"birth_date": "1990-06-01", "height_feet": 5, "height_inches": 0, "weight": 300},
        rules,
        today=TODAY,
    )
    assert heavy["recommendation"] == "review_required"
    assert heavy["flags"][0]["rule_key"] == "high_bmi"


def test_missing_values_never_trigger() -> None:
    rules = [
        rule("pregnant", "has_been_pregnant", "neq", False),
        rule("too_young", "calculated_age", "lt", 18),
    ]
    result = screening.evaluate_submission({"has_been_pregnant": None}, rules, today=TODAY)
    assert result["flags"] == []


@pytest.mark.parametrize(
    ("operator", "actual", "expected", "triggered"),
    [
        ("gt", 5, 4, True),
        ("gte", 4, 4, True),
        ("lt", 3.5, 4, True),
        ("lte", 5, 4, False),
        ("gt", True, 0, False),
        ("gt", "5", 4, False),
        ("eq", True, True, True),
        ("eq", 1, True, False),
        ("eq", "yes", "yes", True),
        ("eq", 4, 4.0, True),
        ("neq", "male", "female", True),
        ("neq", False, 0, True),
        ("between", 5, 4, False),
    ],
)
def test_rule_operators(operator, actual, expected, triggered) -> None:
    assert screening.rule_triggered(operator, actual, expected) is triggered


def test_ai_prompt_lists_flags_and_details() -> None:
    submission = {"assigned_sex": "male", "surgery_details": "Appendectomy 2019"}
    flags = [{"rule_name": "Had Surgery", "actual_value": True, "severity": "medium"}]
    prompt = screening.build_ai_prompt(submission, {"calculated_age": 34}, flags)

    assert "Age: 34" in prompt
    assert "BMI: Unknown" in prompt
    assert "- Had Surgery: True (medium severity)" in prompt
    assert "Surgery: Appendectomy 2019" in prompt
