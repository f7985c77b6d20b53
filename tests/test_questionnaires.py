# tests/test_questionnaires.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from db import health_questionnaires_collection
from services.questionnaire import HEALTH_QUESTIONS, REQUIRED_QUESTION_IDS


def create_link(client, headers, donor) -> str:
    response = client.post(f"/donors/{donor['id']}/questionnaires", headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["link"].rsplit("/", 1)[-1]


def test_catalogue_shape() -> None:
    assert len(HEALTH_QUESTIONS) == 38
    assert REQUIRED_QUESTION_IDS == ["q1", "q2", "q23", "q24", "q37"]


def test_public_get_returns_questions(client, staff_headers, donor) -> None:
    token = create_link(client, staff_headers, donor)

    response = client.get(f"/questionnaire/{token}")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["donor"]["first_name"] == "Ada"
    assert len(body["questions"]) == 38

    assert client.get("/questionnaire/unknown").status_code == 404


def test_save_progress_then_complete(client, staff_headers, donor) -> None:
    token = create_link(client, staff_headers, donor)

    partial = client.put(f"/questionnaire/{token}", json={"responses": {"q1": {"answer": "yes"}}})
    assert partial.status_code == 200
    assert partial.json()["status"] == "in_progress"
    stored = health_questionnaires_collection.find_one({})
    assert stored["started_at"] is not None

    too_early = client.put(f"/questionnaire/{token}", json={"responses": {}, "complete": True})
    assert too_early.status_code == 400
    assert "q2" in too_early.json()["detail"]

    answers = {qid: {"answer": "no"} for qid in REQUIRED_QUESTION_IDS if qid != "q1"}
    done = client.put(f"/questionnaire/{token}", json={"responses": answers, "complete": True})
    assert done.status_code == 200, done.text
    stored = health_questionnaires_collection.find_one({})
    assert stored["status"] == "completed"
    assert stored["responses"]["q1"]["answer"] == "yes"
    assert stored["completed_at"] is not None

    locked = client.put(f"/questionnaire/{token}", json={"responses": {"q3": {"answer": "no"}}})
    assert locked.status_code == 400


def test_unknown_question_rejected(client, staff_headers, donor) -> None:
    token = create_link(client, staff_headers, donor)
    response = client.put(f"/questionnaire/{token}", json={"responses": {"q99": {"answer": "yes"}}})
    assert response.status_code == 400


def test_expired_questionnaire(client, staff_headers, donor) -> None:
    token = create_link(client, staff_headers, donor)
    health_questionnaires_collection.update_one(
        {"access_token": token},
        {"$set": {"token_expires_at": datetime.now(timezone.utc) - timedelta(days=1)}},
    )
    assert client.get(f"/questionnaire/{token}").status_code == 410
    assert client.put(f"/questionnaire/{token}", json={"responses": {}}).status_code == 410


def test_staff_list_and_delete(client, staff_headers, donor) -> None:
    create_link(client, staff_headers, donor)
    listed = client.get(f"/donors/{donor['id']}/questionnaires", headers=staff_headers).json()
    assert len(listed) == 1

    response = client.delete(f"/donors/{donor['id']}/questionnaires/{listed[0]['id']}", headers=staff_headers)
    assert response.status_code == 200
    assert health_questionnaires_collection.count_documents({}) == 0
