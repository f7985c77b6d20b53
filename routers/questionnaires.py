from datetime import timedelta
from fastapi import APIRouter, Depends, Form, HTTPException, status
from typing import Annotated, Any, Dict, Optional
from pydantic import BaseModel
from db import appointments_collection, donors_collection, health_questionnaires_collection
from dependencies.authz import can_read, can_write
from routers.donors import get_donor_or_404
from services.activity import log_activity
from services.questionnaire import (
    HEALTH_QUESTIONS,
    QUESTIONNAIRE_SECTIONS,
    missing_required_answers,
    unknown_question_ids,
)
from utils import as_utc, generate_access_token, public_link, replace_mongo_id, to_object_id, utc_now

TOKEN_LIFETIME = timedelta(days=7)


class QuestionAnswer(BaseModel):
    answer: Any = None
    details: Optional[str] = None


class QuestionnaireSave(BaseModel):
    responses: Dict[str, QuestionAnswer]
    complete: bool = False


questionnaires_router = APIRouter(tags=["Health Questionnaires"])


def _questionnaire_for_token(token: str) -> dict:
    questionnaire = health_questionnaires_collection.find_one({"access_token": token})
    if not questionnaire:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Questionnaire not found or invalid link.")
    if as_utc(questionnaire["token_expires_at"]) < utc_now():
        raise HTTPException(
            status.HTTP_410_GONE,
            "This questionnaire link has expired. Please contact the clinic for a new link.",
        )
    return questionnaire


# --- Staff ---
@questionnaires_router.post("/donors/{donor_id}/questionnaires", status_code=status.HTTP_201_CREATED)
def create_questionnaire_link(
    donor_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    appointment_id: Annotated[Optional[str], Form()] = None,
):
    donor = get_donor_or_404(donor_id)

    appointment_oid = None
    if appointment_id:
        appointment_oid = to_object_id(appointment_id, "Appointment")
        if appointments_collection.count_documents({"_id": appointment_oid, "donor_id": donor["_id"]}) == 0:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Appointment not found.")

    token = generate_access_token()
    now = utc_now()
    result = health_questionnaires_collection.insert_one({
        "donor_id": donor["_id"],
        "appointment_id": appointment_oid,
        "access_token": token,
        "token_expires_at": now + TOKEN_LIFETIME,
        "status": "pending",
        "responses": {},
        "started_at": None,
        "completed_at": None,
        "created_by": current_user["id"],
        "created_at": now,
        "updated_at": now,
    })
    log_activity("questionnaire_created", "health_questionnaire", result.inserted_id, current_user["id"],
                 donor_id=donor["_id"])

    return {
        "message": "Questionnaire link created",
        "id": str(result.inserted_id),
        "link": public_link("questionnaire", token),
    }


@questionnaires_router.get("/donors/{donor_id}/questionnaires", dependencies=[Depends(can_read)])
def list_questionnaires(donor_id: str):
    donor = get_donor_or_404(donor_id)
    questionnaires = health_questionnaires_collection.find({"donor_id": donor["_id"]}).sort("created_at", -1)

    result = []
    for questionnaire in questionnaires:
        questionnaire["link"] = public_link("questionnaire", questionnaire["access_token"])
        result.append(replace_mongo_id(questionnaire))
    return result


@questionnaires_router.delete("/donors/{donor_id}/questionnaires/{questionnaire_id}")
def delete_questionnaire(donor_id: str, questionnaire_id: str, current_user: Annotated[dict, Depends(can_write)]):
    result = health_questionnaires_collection.delete_one({
        "_id": to_object_id(questionnaire_id, "Questionnaire"),
        "donor_id": to_object_id(donor_id, "Donor"),
    })
    if result.deleted_count == 0:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Questionnaire not found.")

    log_activity("questionnaire_deleted", "health_questionnaire", questionnaire_id, current_user["id"],
                 donor_id=to_object_id(donor_id, "Donor"))
    return {"message": "Questionnaire deleted"}


# --- Public form ---
@questionnaires_router.get("/questionnaire/{token}")
def get_questionnaire(token: str):
    questionnaire = _questionnaire_for_token(token)
    donor = donors_collection.find_one(
        {"_id": questionnaire["donor_id"]},
        {"donor_id": 1, "first_name": 1, "last_name": 1},
    )

    return {
        "id": str(questionnaire["_id"]),
        "status": questionnaire["status"],
        "responses": questionnaire.get("responses") or {},
        "donor": replace_mongo_id(donor) if donor else None,
        "sections": QUESTIONNAIRE_SECTIONS,
        "questions": HEALTH_QUESTIONS,
    }


@questionnaires_router.put("/questionnaire/{token}")
def save_questionnaire(token: str, body: QuestionnaireSave):
    questionnaire = _questionnaire_for_token(token)
    if questionnaire["status"] == "completed":
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "This questionnaire has already been completed.")

    responses = {k: v.model_dump() for k, v in body.responses.items()}
    unknown = unknown_question_ids(responses)
    if unknown:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Unknown question ids: {', '.join(unknown)}")

    merged = {**(questionnaire.get("responses") or {}), **responses}
    now = utc_now()
    updates = {"responses": merged, "updated_at": now}

    if body.complete:
        missing = missing_required_answers(merged)
        if missing:
            raise HTTPException(
                status.HTTP_400_BAD_REQUEST,
                f"Please answer all required questions: {', '.join(missing)}",
            )
        updates["status"] = "completed"
        updates["completed_at"] = now
    else:
        updates["status"] = "in_progress"

    if questionnaire["status"] == "pending" or not questionnaire.get("started_at"):
        updates["started_at"] = now

    health_questionnaires_collection.update_one({"_id": questionnaire["_id"]}, {"$set": updates})

    if body.complete:
        log_activity("questionnaire_completed", "health_questionnaire", questionnaire["_id"],
                     donor_id=questionnaire["donor_id"])
        return {"message": "Questionnaire completed successfully!", "status": "completed"}
    return {"message": "Progress saved.", "status": "in_progress"}
