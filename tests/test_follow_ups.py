# tests/test_follow_ups.py

from __future__ import annotations

import pytest

from db import follow_ups_collection


@pytest.fixture()
def follow_up_id(client, staff_headers, donor) -> str:
    appointment = client.post(
        "/appointments",
        data={"donor_id": donor["id"], "appointment_date": "2026-01-05T09:30:00"},
        headers=staff_headers,
    ).json()
    response = client.post(f"/appointments/{appointment['id']}/results", data={"volume_ml": "700"},
                           headers=staff_headers)
    return response.json()["follow_up_id"]


def test_open_list_includes_donor_and_appointment(client, staff_headers, follow_up_id) -> None:
    listed = client.get("/follow-ups", headers=staff_headers).json()

    assert [f["id"] for f in listed] == [follow_up_id]
    assert listed[0]["donor"]["first_name"] == "Ada"
    assert listed[0]["appointment_date"].startswith("2026-01-05")


def test_attempts_and_email(client, staff_headers, follow_up_id) -> None:
    response = client.post(f"/follow-ups/{follow_up_id}/attempts", data={"attempt": "2"}, headers=staff_headers)
    assert response.json()["status"] == "attempted_2"

    bad = client.post(f"/follow-ups/{follow_up_id}/attempts", data={"attempt": "3"}, headers=staff_headers)
    assert bad.status_code == 422

    client.post(f"/follow-ups/{follow_up_id}/email-sent", headers=staff_headers)
    assert client.get("/follow-ups", headers=staff_headers).json() == []
    emailed = client.get("/follow-ups", params={"status": "email_sent"}, headers=staff_headers).json()
    assert len(emailed) == 1


def test_complete_follow_up(client, staff_headers, follow_up_id) -> None:
    response = client.post(
        f"/follow-ups/{follow_up_id}/complete",
        data={"pain_level": "4", "would_donate_again": "true", "procedure_feedback": "Smooth"},
        headers=staff_headers,
    )
    assert response.status_code == 200

    stored = follow_ups_collection.find_one({})
    assert stored["status"] == "completed"
    assert stored["pain_level"] == 4
    assert stored["would_donate_again"] is True
    assert stored["completed_by"] is not None

    again = client.post(f"/follow-ups/{follow_up_id}/complete", headers=staff_headers)
    assert again.status_code == 400


def test_apply_ai_responses(client, staff_headers, follow_up_id) -> None:
    missing = client.post(f"/follow-ups/{follow_up_id}/apply-ai-responses", headers=staff_headers)
    assert missing.status_code == 400

    follow_ups_collection.update_one({}, {"$set": {"ai_parsed_responses": {
        "call_successful": True,
        "pain_level": 2,
        "doctor_rating": 5,
        "signs_of_infection": False,
        "would_donate_again": None,
        "summary": "Donor feels well.",
    }}})

    response = client.post(f"/follow-ups/{follow_up_id}/apply-ai-responses", headers=staff_headers)
    assert response.status_code == 200
    assert response.json()["fields"] == ["doctor_rating", "notes", "pain_level", "signs_of_infection"]

    stored = follow_ups_collection.find_one({})
    assert stored["status"] == "completed"
    assert stored["signs_of_infection"] is False
    assert stored["notes"] == "Donor feels well."
    assert stored["completed_at"] is not None


def test_apply_ai_responses_once(client, staff_headers, follow_up_id) -> None:
    follow_ups_collection.update_one({}, {"$set": {"ai_parsed_responses": {"pain_level": 2}}})
    client.post(f"/follow-ups/{follow_up_id}/apply-ai-responses", headers=staff_headers)
    completed_at = follow_ups_collection.find_one({})["completed_at"]

    again = client.post(f"/follow-ups/{follow_up_id}/apply-ai-responses", headers=staff_headers)
    assert again.status_code == 400
    assert follow_ups_collection.find_one({})["completed_at"] == completed_at


def test_readonly_cannot_manage(client, readonly_headers, follow_up_id) -> None:
    response = client.post(f"/follow-ups/{follow_up_id}/email-sent", headers=readonly_headers)
    assert response.status_code == 403
