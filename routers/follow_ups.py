from enum import Enum
from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from typing import Annotated, Optional
from db import appointments_collection, donors_collection, follow_ups_collection
from dependencies.authz import can_read, has_permission
from services.activity import log_activity
from utils import replace_mongo_id, to_object_id, utc_now


class FollowUpStatus(str, Enum):
    PENDING = "pending"
    ATTEMPTED_1 = "attempted_1"
    ATTEMPTED_2 = "attempted_2"
    CALLBACK_REQUESTED = "callback_requested"
    EMAIL_SENT = "email_sent"
    COMPLETED = "completed"


OPEN_STATUSES = (
    FollowUpStatus.PENDING.value,
    FollowUpStatus.ATTEMPTED_1.value,
    FollowUpStatus.ATTEMPTED_2.value,
    FollowUpStatus.CALLBACK_REQUESTED.value,
)

# Post-donation survey answers a call transcript can fill in
SURVEY_FIELDS = (
    "pain_level",
    "current_pain_level",
    "doctor_rating",
    "nurse_rating",
    "staff_rating",
    "took_pain_medication",
    "pain_medication_details",
    "checked_aspiration_sites",
    "aspiration_sites_notes",
    "signs_of_infection",
    "infection_details",
    "unusual_symptoms",
    "symptoms_details",
    "would_donate_again",
    "procedure_feedback",
)

can_follow_up = has_permission("manage_follow_ups")

follow_ups_router = APIRouter(tags=["Follow-ups"])


def get_follow_up_or_404(follow_up_id: str) -> dict:
    follow_up = follow_ups_collection.find_one({"_id": to_object_id(follow_up_id, "Follow-up")})
    if not follow_up:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Follow-up not found.")
    return follow_up


def _ensure_open(follow_up: dict):
    if follow_up["status"] == FollowUpStatus.COMPLETED.value:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Follow-up is already completed.")


def _complete(follow_up: dict, fields: dict, completed_by: str, action: str):
    now = utc_now()
    update_data = {
        **fields,
        "status": FollowUpStatus.COMPLETED.value,
        "completed_by": completed_by,
        "completed_at": now,
        "updated_at": now,
    }
    follow_ups_collection.update_one({"_id": follow_up["_id"]}, {"$set": update_data})
    log_activity(action, "follow_up", follow_up["_id"], completed_by, donor_id=follow_up["donor_id"])


@follow_ups_router.get("/follow-ups", dependencies=[Depends(can_read)])
def list_open_follow_ups(
    follow_up_status: Annotated[Optional[FollowUpStatus], Query(alias="status")] = None,
):
    query = {"status": follow_up_status.value if follow_up_status else {"$in": list(OPEN_STATUSES)}}
    follow_ups = list(follow_ups_collection.find(query).sort("created_at", 1))

    donors = {
        d["_id"]: d
        for d in donors_collection.find(
            {"_id": {"$in": list({f["donor_id"] for f in follow_ups})}},
            {"donor_id": 1, "first_name": 1, "last_name": 1, "cell_phone": 1},
        )
    }
    appointments = {
        a["_id"]: a
        for a in appointments_collection.find(
            {"_id": {"$in": list({f["appointment_id"] for f in follow_ups})}},
            {"appointment_date": 1},
        )
    }
    for follow_up in follow_ups:
        follow_up["donor"] = donors.get(follow_up["donor_id"])
        appointment = appointments.get(follow_up["appointment_id"])
        follow_up["appointment_date"] = appointment["appointment_date"] if appointment else None

    return [replace_mongo_id(f) for f in follow_ups]


@follow_ups_router.get("/follow-ups/{follow_up_id}", dependencies=[Depends(can_read)])
def get_follow_up(follow_up_id: str):
    return replace_mongo_id(get_follow_up_or_404(follow_up_id))


@follow_ups_router.post("/follow-ups/{follow_up_id}/attempts")
def record_call_attempt(
    follow_up_id: str,
    current_user: Annotated[dict, Depends(can_follow_up)],
    attempt: Annotated[int, Form(ge=1, le=2)],
):
    follow_up = get_follow_up_or_404(follow_up_id)
    new_status = FollowUpStatus.ATTEMPTED_1 if attempt == 1 else FollowUpStatus.ATTEMPTED_2

    follow_ups_collection.update_one(
        {"_id": follow_up["_id"]},
        {"$set": {"status": new_status.value, "updated_at": utc_now()}},
    )
    log_activity("follow_up_attempted", "follow_up", follow_up["_id"], current_user["id"],
                 donor_id=follow_up["donor_id"], details={"attempt": attempt})
    return {"message": f"Call attempt {attempt} recorded.", "status": new_status.value}


@follow_ups_router.post("/follow-ups/{follow_up_id}/email-sent")
def mark_email_sent(follow_up_id: str, current_user: Annotated[dict, Depends(can_follow_up)]):
    follow_up = get_follow_up_or_404(follow_up_id)
    follow_ups_collection.update_one(
        {"_id": follow_up["_id"]},
        {"$set": {"status": FollowUpStatus.EMAIL_SENT.value, "updated_at": utc_now()}},
    )
    log_activity("follow_up_email_sent", "follow_up", follow_up["_id"], current_user["id"],
                 donor_id=follow_up["donor_id"])
    return {"message": "Email status updated."}


@follow_ups_router.post("/follow-ups/{follow_up_id}/complete")
def complete_follow_up(
    follow_up_id: str,
    current_user: Annotated[dict, Depends(can_follow_up)],
    pain_level: Annotated[Optional[int], Form(ge=1, le=10)] = None,
    procedure_feedback: Annotated[Optional[str], Form()] = None,
    would_donate_again: Annotated[Optional[bool], Form()] = None,
    notes: Annotated[Optional[str], Form()] = None,
):
    follow_up = get_follow_up_or_404(follow_up_id)
    _ensure_open(follow_up)

    _complete(
        follow_up,
        {
            "pain_level": pain_level,
            "procedure_feedback": procedure_feedback or None,
            "would_donate_again": would_donate_again,
            "notes": notes or None,
        },
        current_user["id"],
        "follow_up_completed",
    )
    return {"message": "The follow-up has been recorded."}


@follow_ups_router.post("/follow-ups/{follow_up_id}/apply-ai-responses")
def apply_ai_responses(follow_up_id: str, current_user: Annotated[dict, Depends(can_follow_up)]):
    follow_up = get_follow_up_or_404(follow_up_id)
    _ensure_open(follow_up)
    parsed = follow_up.get("ai_parsed_responses")
    if not parsed:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No AI-parsed responses available for this follow-up.")

    fields = {key: parsed[key] for key in SURVEY_FIELDS if parsed.get(key) is not None}
    if parsed.get("summary"):
        fields["notes"] = parsed["summary"]

    _complete(follow_up, fields, current_user["id"], "follow_up_ai_applied")
    return {"message": "AI responses applied.", "fields": sorted(fields)}
