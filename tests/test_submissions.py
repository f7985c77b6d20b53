# tests/test_submissions.py

from __future__ import annotations

import pytest

from db import donors_collection, screening_rules_collection, webform_submissions_collection
from services import ai, screening


@pytest.fixture()
def surgery_rule() -> None:
    screening_rules_collection.insert_one({
        "rule_key": "had_surgery",
        "rule_name": "Recent Surgery",
        "description": "Donor reported surgery",
        "field_path": "had_surgery",
        "rule_value": {"operator": "eq", "value": True},
        "rule_type": "soft_flag",
        "severity": "medium",
        "is_active": True,
        "display_order": 1,
    })


def submit(client, form, **overrides):
    return client.post("/submissions", data={**form, **overrides})


def test_intake_assigns_sequential_reference_and_evaluates(client, intake_form) -> None:
    first = submit(client, intake_form)
    second = submit(client, intake_form, email="other@example.com")

    assert first.status_code == 201, first.text
    assert first.json()["submission_id"] == "WF-000001"
    assert second.json()["submission_id"] == "WF-000002"
    assert first.json()["status"] == "pending"

    stored = webform_submissions_collection.find_one({"submission_id": "WF-000001"})
    assert stored["ai_recommendation"] == "suitable"
    assert stored["ai_score"] == 95
    assert stored["birth_date"] == "1992-12-09"


def test_intake_requires_every_acknowledgement(client, intake_form) -> None:
    response = submit(client, intake_form, acknowledge_time_commitment="false")
    assert response.status_code == 400
    assert webform_submissions_collection.count_documents({}) == 0


def test_status_lookup_is_trimmed_and_case_insensitive(client, intake_form) -> None:
    submit(client, intake_form)

    response = client.get("/submissions/status/  wf-000001 ")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["status_label"] == "Under Review"
    assert body["first_name"] == "Grace"
    assert "email" not in body

    assert client.get("/submissions/status/WF-999999").status_code == 404


def test_evaluate_endpoint_validation(client, staff_headers) -> None:
    missing = client.post("/evaluate-submission", json={}, headers=staff_headers)
    assert missing.status_code == 400
    assert missing.json()["detail"] == "submission_id is required"

    malformed = client.post("/evaluate-submission", json={"submission_id": "not-an-id"}, headers=staff_headers)
    assert malformed.status_code == 400

    unknown = client.post(
        "/evaluate-submission", json={"submission_id": "64b000000000000000000000"}, headers=staff_headers
    )
    assert unknown.status_code == 404


def test_evaluate_uses_ai_summary_only_for_review(client, intake_form, staff_headers, surgery_rule, monkeypatch) -> None:
    prompts = []

    def fake_summary(prompt):
        prompts.append(prompt)
        return "Surgery history needs a clinician's review."

    monkeypatch.setattr(ai, "summarize_submission", fake_summary)
    submit(client, intake_form, had_surgery="true", surgery_details="Knee, 2021")
    stored = webform_submissions_collection.find_one({})

    response = client.post(
        "/evaluate-submission",
        json={"submission_id": str(stored["_id"]), "use_ai": True},
        headers=staff_headers,
    )
    assert response.status_code == 200, response.text
    evaluation = response.json()["evaluation"]
    assert evaluation["recommendation"] == "review_required"
    assert evaluation["score"] == 75
    assert evaluation["summary"] == "Surgery history needs a clinician's review."
    assert "Surgery: Knee, 2021" in prompts[0]

    stored = webform_submissions_collection.find_one({"_id": stored["_id"]})
    assert stored["ai_evaluation"]["summary"] == evaluation["summary"]
    assert stored["evaluation_flags"][0]["rule_key"] == "had_surgery"


def test_ai_prompt_uses_same_day_as_rules(client, intake_form, staff_headers, surgery_rule, monkeypatch) -> None:
    days = []
    derive_fields = screening.derive_fields

    def recording_derive_fields(submission, today):
        days.append(today)
        return derive_fields(submission, today)

    monkeypatch.setattr(screening, "derive_fields", recording_derive_fields)
    monkeypatch.setattr(ai, "summarize_submission", lambda prompt: "Needs review.")
    submit(client, intake_form, had_surgery="true")
    stored = webform_submissions_collection.find_one({})
    days.clear()

    client.post("/evaluate-submission", json={"submission_id": str(stored["_id"]), "use_ai": True},
                headers=staff_headers)
    assert len(days) == 2
    assert days[0] == days[1]


def test_ai_failure_keeps_rule_summary(client, intake_form, staff_headers, surgery_rule, monkeypatch) -> None:
    monkeypatch.setattr(ai, "summarize_submission", lambda prompt: None)
    submit(client, intake_form, had_surgery="true")
    stored = webform_submissions_collection.find_one({})

    response = client.post(
        f"/submissions/{stored['_id']}/evaluate", params={"use_ai": "true"}, headers=staff_headers
    )
    assert response.status_code == 200
    assert response.json()["evaluation"]["summary"] == "1 flag(s) require manual review: Recent Surgery."


def test_readonly_cannot_evaluate(client, readonly_headers) -> None:
    response = client.post(
        "/evaluate-submission", json={"submission_id": "64b000000000000000000000"}, headers=readonly_headers
    )
    assert response.status_code == 403


def test_approve_creates_donor_once(client, intake_form, staff_headers) -> None:
    submit(client, intake_form)
    stored = webform_submissions_collection.find_one({})

    response = client.post(
        f"/submissions/{stored['_id']}/approve",
        data={"reviewer_notes": "Looks good"},
        headers=staff_headers,
    )
    assert response.status_code == 200, response.text
    donor = response.json()["donor"]
    assert donor["donor_id"] == "DN-000001"
    assert donor["height_inches"] == 66
    assert donor["bmi"] == 22.6
    assert donor["eligibility_status"] == "pending_review"
    assert donor["cell_phone"] == "3015550199"

    stored = webform_submissions_collection.find_one({"_id": stored["_id"]})
    assert stored["status"] == "approved"
    assert str(stored["linked_donor_id"]) == donor["id"]

    again = client.post(f"/submissions/{stored['_id']}/approve", headers=staff_headers)
    assert again.status_code == 400
    assert donors_collection.count_documents({}) == 1


def test_reject_records_reviewer(client, intake_form, staff_headers) -> None:
    submit(client, intake_form)
    stored = webform_submissions_collection.find_one({})

    response = client.post(f"/submissions/{stored['_id']}/reject", data={"reviewer_notes": "Underweight"},
                           headers=staff_headers)
    assert response.status_code == 200

    lookup = client.get("/submissions/status/WF-000001").json()
    assert lookup["status"] == "rejected"
    assert lookup["status_label"] == "Not Eligible"


def test_link_copies_selected_fields(client, intake_form, staff_headers, donor) -> None:
    submit(client, intake_form)
    stored = webform_submissions_collection.find_one({})

    candidates = client.get(f"/submissions/{stored['_id']}/link-candidates/{donor['id']}", headers=staff_headers)
    keys = [f["key"] for f in candidates.json()["updateable_fields"]]
    assert keys == ["phone", "email", "address"]

    response = client.post(
        f"/submissions/{stored['_id']}/link",
        data={"donor_id": donor["id"], "fields_to_update": ["phone", "address"]},
        headers=staff_headers,
    )
    assert response.status_code == 200, response.text
    assert response.json()["message"] == f"Successfully linked to donor {donor['donor_id']}"

    updated = client.get(f"/donors/{donor['id']}", headers=staff_headers).json()
    assert updated["cell_phone"] == "3015550199"
    assert updated["address_line_1"] == "1 Navy Way"
    assert updated["email"] == "ada@example.com"

    stored = webform_submissions_collection.find_one({"_id": stored["_id"]})
    assert stored["status"] == "linked_to_donor"


def test_list_filters_by_status(client, intake_form, staff_headers) -> None:
    submit(client, intake_form)
    submit(client, intake_form)
    first = webform_submissions_collection.find_one({"submission_id": "WF-000001"})
    client.post(f"/submissions/{first['_id']}/reject", headers=staff_headers)

    pending = client.get("/submissions", params={"status": "pending"}, headers=staff_headers).json()
    assert pending["total"] == 1
    assert pending["submissions"][0]["submission_id"] == "WF-000002"
