import re
from datetime import date
from enum import Enum
from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from typing import Annotated, Optional
from pydantic import BaseModel, EmailStr
from bson.objectid import ObjectId
from db import (
    activity_logs_collection,
    appointments_collection,
    donor_notes_collection,
    donors_collection,
    users_collection,
)
from dependencies.authz import can_read, can_write
from services.activity import log_activity
from utils import next_reference, replace_mongo_id, to_object_id, utc_now


class SexType(str, Enum):
    MALE = "male"
    FEMALE = "female"


class EligibilityStatus(str, Enum):
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"
    PENDING_REVIEW = "pending_review"


class DonorUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    middle_initial: Optional[str] = None
    chosen_name: Optional[str] = None
    pronouns: Optional[str] = None
    birth_date: Optional[date] = None
    assigned_sex: Optional[SexType] = None
    email: Optional[EmailStr] = None
    cell_phone: Optional[str] = None
    home_phone: Optional[str] = None
    work_phone: Optional[str] = None
    address_line_1: Optional[str] = None
    address_line_2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    ethnicity: Optional[str] = None
    height_inches: Optional[float] = None
    weight_pounds: Optional[float] = None
    bmi: Optional[float] = None
    tobacco_use: Optional[bool] = None
    alcohol_use: Optional[bool] = None
    cmv_positive: Optional[str] = None
    eligibility_status: Optional[EligibilityStatus] = None
    ineligibility_reason: Optional[str] = None
    last_donation_date: Optional[date] = None
    next_eligible_date: Optional[date] = None


donors_router = APIRouter()


def get_donor_or_404(donor_id: str) -> dict:
    donor = donors_collection.find_one({"_id": to_object_id(donor_id, "Donor")})
    if not donor:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Donor not found.")
    return donor


def create_donor_record(donor_data: dict, created_by: Optional[str]) -> dict:
    """Insert a donor with a fresh DN- reference and return the stored document."""
    donor_data["donor_id"] = next_reference("DN")
    donor_data.setdefault("eligibility_status", EligibilityStatus.PENDING_REVIEW.value)
    donor_data["created_by"] = created_by
    donor_data["created_at"] = utc_now()
    donor_data["updated_at"] = donor_data["created_at"]

    result = donors_collection.insert_one(donor_data)
    log_activity("donor_created", "donor", result.inserted_id, created_by, donor_id=result.inserted_id,
                 details={"donor_id": donor_data["donor_id"]})
    return donors_collection.find_one({"_id": result.inserted_id})


def _dates_to_iso(data: dict) -> dict:
    # BSON has no plain date type; keep calendar dates as ISO strings
    return {k: v.isoformat() if isinstance(v, date) else v for k, v in data.items()}


@donors_router.post("/donors", tags=["Donors"], status_code=status.HTTP_201_CREATED)
def create_donor(
    current_user: Annotated[dict, Depends(can_write)],
    first_name: Annotated[str, Form(min_length=1)],
    last_name: Annotated[str, Form(min_length=1)],
    birth_date: Annotated[date, Form()],
    assigned_sex: Annotated[SexType, Form()],
    middle_initial: Annotated[Optional[str], Form(max_length=1)] = None,
    email: Annotated[Optional[EmailStr], Form()] = None,
    cell_phone: Annotated[Optional[str], Form()] = None,
    address_line_1: Annotated[Optional[str], Form()] = None,
    address_line_2: Annotated[Optional[str], Form()] = None,
    city: Annotated[Optional[str], Form()] = None,
    state: Annotated[Optional[str], Form()] = None,
    postal_code: Annotated[Optional[str], Form()] = None,
    ethnicity: Annotated[Optional[str], Form()] = None,
):
    donor = create_donor_record(
        {
            "first_name": first_name,
            "last_name": last_name,
            "middle_initial": middle_initial,
            "birth_date": birth_date.isoformat(),
            "assigned_sex": assigned_sex.value,
            "email": email,
            "cell_phone": cell_phone,
            "address_line_1": address_line_1,
            "address_line_2": address_line_2,
            "city": city,
            "state": state,
            "postal_code": postal_code,
            "ethnicity": ethnicity,
        },
        current_user["id"],
    )
    return {
        "message": f"{first_name} {last_name} has been added with ID {donor['donor_id']}.",
        "donor": replace_mongo_id(donor),
    }


@donors_router.get("/donors", tags=["Donors"], dependencies=[Depends(can_read)])
def list_donors(
    search: Annotated[Optional[str], Query(description="Name, donor ID, email or phone")] = None,
    eligibility_status: Optional[EligibilityStatus] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    skip: Annotated[int, Query(ge=0)] = 0,
):
    query = {}
    if eligibility_status:
        query["eligibility_status"] = eligibility_status.value
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [
            {"first_name": pattern},
            {"last_name": pattern},
            {"donor_id": pattern},
            {"email": pattern},
            {"cell_phone": pattern},
        ]

    total = donors_collection.count_documents(query)
    cursor = donors_collection.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return {"total": total, "donors": [replace_mongo_id(d) for d in cursor]}


@donors_router.get("/donors/{donor_id}", tags=["Donors"], dependencies=[Depends(can_read)])
def get_donor(donor_id: str):
    return replace_mongo_id(get_donor_or_404(donor_id))


@donors_router.patch("/donors/{donor_id}", tags=["Donors"])
def update_donor(
    donor_id: str,
    changes: DonorUpdate,
    current_user: Annotated[dict, Depends(can_write)],
):
    update_data = _dates_to_iso(changes.model_dump(exclude_unset=True, mode="python"))
    update_data = {k: v.value if isinstance(v, Enum) else v for k, v in update_data.items()}
    if not update_data:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No update fields provided.")

    donor = get_donor_or_404(donor_id)
    update_data["updated_at"] = utc_now()
    donors_collection.update_one({"_id": donor["_id"]}, {"$set": update_data})

    changed = sorted(k for k in update_data if k != "updated_at")
    log_activity("donor_updated", "donor", donor["_id"], current_user["id"], donor_id=donor["_id"],
                 details={"fields": changed})
    return replace_mongo_id(donors_collection.find_one({"_id": donor["_id"]}))


# --- Notes ---
@donors_router.post("/donors/{donor_id}/notes", tags=["Donor Notes"], status_code=status.HTTP_201_CREATED)
def add_note(
    donor_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    content: Annotated[str, Form(min_length=1)],
):
    donor = get_donor_or_404(donor_id)
    now = utc_now()
    note = {
        "donor_id": donor["_id"],
        "content": content.strip(),
        "created_by": current_user["id"],
        "created_at": now,
        "updated_at": now,
    }
    result = donor_notes_collection.insert_one(note)
    return {"message": "Note added.", "id": str(result.inserted_id)}


@donors_router.get("/donors/{donor_id}/notes", tags=["Donor Notes"], dependencies=[Depends(can_read)])
def list_notes(donor_id: str):
    donor = get_donor_or_404(donor_id)
    notes = list(donor_notes_collection.find({"donor_id": donor["_id"]}).sort("created_at", -1))

    author_ids = {ObjectId(n["created_by"]) for n in notes if ObjectId.is_valid(n.get("created_by"))}
    authors = {
        str(u["_id"]): u.get("full_name") or u.get("email")
        for u in users_collection.find({"_id": {"$in": list(author_ids)}}, {"full_name": 1, "email": 1})
    }
    for note in notes:
        note["author_name"] = authors.get(note.get("created_by"), "Unknown")
    return [replace_mongo_id(n) for n in notes]


@donors_router.delete("/donors/{donor_id}/notes/{note_id}", tags=["Donor Notes"])
def delete_note(
    donor_id: str,
    note_id: str,
    current_user: Annotated[dict, Depends(can_write)],
):
    note = donor_notes_collection.find_one({
        "_id": to_object_id(note_id, "Note"),
        "donor_id": to_object_id(donor_id, "Donor"),
    })
    if not note:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Note not found.")
    if note["created_by"] != current_user["id"] and current_user["role"] != "admin":
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Only the author or an admin can delete this note.")

    donor_notes_collection.delete_one({"_id": note["_id"]})
    return {"message": "Note deleted."}


# --- Timeline ---
@donors_router.get("/donors/{donor_id}/timeline", tags=["Donors"], dependencies=[Depends(can_read)])
def get_timeline(donor_id: str):
    donor = get_donor_or_404(donor_id)
    events = []

    for note in donor_notes_collection.find({"donor_id": donor["_id"]}):
        events.append({"type": "note", "at": note["created_at"], "summary": note["content"],
                       "id": str(note["_id"])})

    for appt in appointments_collection.find({"donor_id": donor["_id"]}):
        events.append({"type": "appointment", "at": appt.get("created_at") or appt["appointment_date"],
                       "summary": f"Appointment {appt.get('status', 'scheduled')}",
                       "appointment_date": appt["appointment_date"], "id": str(appt["_id"])})

    for entry in activity_logs_collection.find({"donor_id": donor["_id"]}):
        events.append({"type": "activity", "at": entry["created_at"], "summary": entry["action"],
                       "details": entry.get("details"), "id": str(entry["_id"])})

    events.sort(key=lambda e: e["at"], reverse=True)
    return events
