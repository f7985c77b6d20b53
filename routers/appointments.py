import logging
from datetime import date, datetime, time, timedelta
from enum import Enum
from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from typing import Annotated, Optional
from bson.objectid import ObjectId
from pymongo.errors import PyMongoError
from db import (
    appointments_collection,
    donation_results_collection,
    donors_collection,
    follow_ups_collection,
    users_collection,
)
from dependencies.authz import can_read, can_write
from routers.donors import get_donor_or_404
from services.activity import log_activity
from utils import as_utc, replace_mongo_id, to_object_id, utc_now

logger = logging.getLogger(__name__)


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"
    DEFERRED = "deferred"
    SAMPLE_NOT_TAKEN = "sample_not_taken"


class AppointmentType(str, Enum):
    SCREENING = "screening"
    DONATION = "donation"


class AppointmentPurpose(str, Enum):
    RESEARCH = "research"
    CLINICAL = "clinical"


class AppointmentLocation(str, Enum):
    BETHESDA = "bethesda"
    GERMANTOWN = "germantown"


class CancellationReason(str, Enum):
    DONOR_CANCELLED = "donor_cancelled"
    CLINIC_CANCELLED = "clinic_cancelled"
    DONOR_ILLNESS = "donor_illness"
    SCHEDULING_CONFLICT = "scheduling_conflict"
    TRANSPORTATION_ISSUE = "transportation_issue"
    OTHER = "other"


class OutcomeStatus(str, Enum):
    NO_SHOW = "no_show"
    DEFERRED = "deferred"
    SAMPLE_NOT_TAKEN = "sample_not_taken"


CANCELLATION_LABELS = {
    CancellationReason.DONOR_CANCELLED: "Donor Cancelled",
    CancellationReason.CLINIC_CANCELLED: "Clinic Cancelled",
    CancellationReason.DONOR_ILLNESS: "Donor Illness",
    CancellationReason.SCHEDULING_CONFLICT: "Scheduling Conflict",
    CancellationReason.TRANSPORTATION_ISSUE: "Transportation Issue",
    CancellationReason.OTHER: "Other",
}

DONOR_LETTERS = tuple("ABCDEFGHIJKL")

appointments_router = APIRouter(tags=["Appointments"])


def get_appointment_or_404(appointment_id: str) -> dict:
    appointment = appointments_collection.find_one({"_id": to_object_id(appointment_id, "Appointment")})
    if not appointment:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Appointment not found.")
    return appointment


def display_datetime(value: datetime) -> str:
    """e.g. "Jan 5, 2026 at 9:30 AM"."""
    clock = f"{value:%I:%M %p}".lstrip("0")
    return f"{value:%b} {value.day}, {value.year} at {clock}"


def _check_donor_letter(donor_letter: Optional[str]):
    if donor_letter and donor_letter not in DONOR_LETTERS:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Donor letter must be one of A-L.")


def _attach_donors(appointments: list[dict]) -> list[dict]:
    donor_ids = {a["donor_id"] for a in appointments}
    donors = {
        d["_id"]: d
        for d in donors_collection.find(
            {"_id": {"$in": list(donor_ids)}},
            {"donor_id": 1, "first_name": 1, "last_name": 1},
        )
    }
    for appointment in appointments:
        donor = donors.get(appointment["donor_id"])
        appointment["donor"] = donor
        appointment["donor_name"] = f"{donor['first_name']} {donor['last_name']}" if donor else None
    return appointments


@appointments_router.post("/appointments", status_code=status.HTTP_201_CREATED)
def schedule_appointment(
    current_user: Annotated[dict, Depends(can_write)],
    donor_id: Annotated[str, Form()],
    appointment_date: Annotated[datetime, Form()],
    appointment_type: Annotated[AppointmentType, Form()] = AppointmentType.SCREENING,
    purpose: Annotated[Optional[AppointmentPurpose], Form()] = None,
    location: Annotated[Optional[AppointmentLocation], Form()] = None,
    donor_letter: Annotated[Optional[str], Form()] = None,
    prescreened_by: Annotated[Optional[str], Form()] = None,
    prescreened_date: Annotated[Optional[date], Form()] = None,
    uber_needed: Annotated[bool, Form()] = False,
    uber_ordered: Annotated[bool, Form()] = False,
    notes: Annotated[Optional[str], Form()] = None,
):
    donor = get_donor_or_404(donor_id)
    _check_donor_letter(donor_letter)

    now = utc_now()
    appointment = {
        "donor_id": donor["_id"],
        "appointment_date": as_utc(appointment_date),
        "appointment_type": appointment_type.value,
        "purpose": purpose.value if purpose else None,
        "location": location.value if location else None,
        "donor_letter": donor_letter,
        "prescreened_by": prescreened_by,
        "prescreened_date": prescreened_date.isoformat() if prescreened_date else None,
        "uber_needed": uber_needed,
        "uber_ordered": uber_ordered,
        "notes": notes,
        "status": AppointmentStatus.SCHEDULED.value,
        "rescheduled_from": None,
        "created_by": current_user["id"],
        "created_at": now,
        "updated_at": now,
    }
    result = appointments_collection.insert_one(appointment)
    log_activity("appointment_scheduled", "appointment", result.inserted_id, current_user["id"],
                 donor_id=donor["_id"], details={"appointment_date": appointment["appointment_date"].isoformat()})

    return {"message": "Appointment scheduled.", "id": str(result.inserted_id)}


@appointments_router.get("/appointments", dependencies=[Depends(can_read)])
def list_appointments(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    appointment_status: Annotated[Optional[AppointmentStatus], Query(alias="status")] = None,
    donor_id: Optional[str] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
):
    query = {}
    date_range = {}
    if date_from:
        date_range["$gte"] = datetime.combine(date_from, time.min)
    if date_to:
        date_range["$lt"] = datetime.combine(date_to + timedelta(days=1), time.min)
    if date_range:
        query["appointment_date"] = date_range
    if appointment_status:
        query["status"] = appointment_status.value
    if donor_id:
        query["donor_id"] = to_object_id(donor_id, "Donor")

    appointments = list(appointments_collection.find(query).sort("appointment_date", 1).limit(limit))
    return [replace_mongo_id(a) for a in _attach_donors(appointments)]


@appointments_router.get("/appointments/{appointment_id}", dependencies=[Depends(can_read)])
def get_appointment(appointment_id: str):
    appointment = _attach_donors([get_appointment_or_404(appointment_id)])[0]

    prescreener = None
    if ObjectId.is_valid(appointment.get("prescreened_by")):
        user = users_collection.find_one({"_id": ObjectId(appointment["prescreened_by"])}, {"full_name": 1})
        prescreener = user.get("full_name") if user else None
    appointment["prescreener_name"] = prescreener

    appointment["results"] = donation_results_collection.find_one({"appointment_id": appointment["_id"]})
    return replace_mongo_id(appointment)


@appointments_router.patch("/appointments/{appointment_id}")
def edit_appointment(
    appointment_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    appointment_date: Annotated[Optional[datetime], Form()] = None,
    appointment_type: Annotated[Optional[AppointmentType], Form()] = None,
    purpose: Annotated[Optional[AppointmentPurpose], Form()] = None,
    location: Annotated[Optional[AppointmentLocation], Form()] = None,
    donor_letter: Annotated[Optional[str], Form()] = None,
    prescreened_by: Annotated[Optional[str], Form()] = None,
    prescreened_date: Annotated[Optional[date], Form()] = None,
    uber_needed: Annotated[Optional[bool], Form()] = None,
    uber_ordered: Annotated[Optional[bool], Form()] = None,
    notes: Annotated[Optional[str], Form()] = None,
):
    appointment = get_appointment_or_404(appointment_id)
    _check_donor_letter(donor_letter)

    changes = {
        "appointment_date": as_utc(appointment_date),
        "appointment_type": appointment_type.value if appointment_type else None,
        "purpose": purpose.value if purpose else None,
        "location": location.value if location else None,
        "donor_letter": donor_letter,
        "prescreened_by": prescreened_by,
        "prescreened_date": prescreened_date.isoformat() if prescreened_date else None,
        "uber_needed": uber_needed,
        "uber_ordered": uber_ordered,
        "notes": notes,
    }
    update_data = {k: v for k, v in changes.items() if v is not None}
    if not update_data:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No update fields provided.")

    update_data["updated_at"] = utc_now()
    appointments_collection.update_one({"_id": appointment["_id"]}, {"$set": update_data})
    log_activity("appointment_updated", "appointment", appointment["_id"], current_user["id"],
                 donor_id=appointment["donor_id"], details={"fields": sorted(k for k in update_data if k != "updated_at")})
    return {"message": "Appointment updated."}


@appointments_router.post("/appointments/{appointment_id}/cancel")
def cancel_appointment(
    appointment_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    reason: Annotated[CancellationReason, Form()],
    notes: Annotated[Optional[str], Form()] = None,
):
    appointment = get_appointment_or_404(appointment_id)

    cancellation_note = f"[Cancelled: {CANCELLATION_LABELS[reason]}]"
    if notes:
        cancellation_note += f" - {notes}"

    appointments_collection.update_one(
        {"_id": appointment["_id"]},
        {"$set": {"status": AppointmentStatus.CANCELLED.value, "notes": cancellation_note, "updated_at": utc_now()}},
    )
    log_activity("appointment_cancelled", "appointment", appointment["_id"], current_user["id"],
                 donor_id=appointment["donor_id"], details={"reason": reason.value})
    return {"message": "Appointment cancelled.", "notes": cancellation_note}


@appointments_router.post("/appointments/{appointment_id}/status")
def set_appointment_outcome(
    appointment_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    new_status: Annotated[OutcomeStatus, Form(alias="status")],
):
    appointment = get_appointment_or_404(appointment_id)
    appointments_collection.update_one(
        {"_id": appointment["_id"]},
        {"$set": {"status": new_status.value, "updated_at": utc_now()}},
    )
    log_activity("appointment_status_changed", "appointment", appointment["_id"], current_user["id"],
                 donor_id=appointment["donor_id"], details={"status": new_status.value})
    return {"message": f"Appointment marked as {new_status.value}."}


@appointments_router.post("/appointments/{appointment_id}/reschedule", status_code=status.HTTP_201_CREATED)
def reschedule_appointment(
    appointment_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    new_date: Annotated[datetime, Form()],
    notes: Annotated[Optional[str], Form()] = None,
):
    appointment = get_appointment_or_404(appointment_id)
    now = utc_now()

    replacement = {
        "donor_id": appointment["donor_id"],
        "appointment_date": as_utc(new_date),
        "appointment_type": appointment.get("appointment_type"),
        "purpose": appointment.get("purpose"),
        "location": appointment.get("location"),
        "donor_letter": appointment.get("donor_letter"),
        "prescreened_by": appointment.get("prescreened_by"),
        "prescreened_date": appointment.get("prescreened_date"),
        "uber_needed": appointment.get("uber_needed", False),
        "uber_ordered": False,
        "notes": notes or None,
        "status": AppointmentStatus.SCHEDULED.value,
        "rescheduled_from": appointment["_id"],
        "created_by": current_user["id"],
        "created_at": now,
        "updated_at": now,
    }
    result = appointments_collection.insert_one(replacement)

    old_notes = f"[Rescheduled to {display_datetime(new_date)}]"
    if appointment.get("notes"):
        old_notes += f" | Original: {appointment['notes']}"
    appointments_collection.update_one(
        {"_id": appointment["_id"]},
        {"$set": {"status": AppointmentStatus.RESCHEDULED.value, "notes": old_notes, "updated_at": now}},
    )

    log_activity("appointment_rescheduled", "appointment", appointment["_id"], current_user["id"],
                 donor_id=appointment["donor_id"], details={"new_appointment_id": str(result.inserted_id)})
    return {
        "message": f"New appointment created for {display_datetime(new_date)}.",
        "id": str(result.inserted_id),
    }


@appointments_router.post("/appointments/{appointment_id}/results", status_code=status.HTTP_201_CREATED)
def record_donation_results(
    appointment_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    volume_ml: Annotated[float, Form(gt=0)],
    cell_count: Annotated[Optional[float], Form()] = None,
    final_vol_ml: Annotated[Optional[float], Form()] = None,
    clots_vol_ml: Annotated[Optional[float], Form()] = None,
    lot_number: Annotated[Optional[str], Form()] = None,
    doctor_id: Annotated[Optional[str], Form()] = None,
    doctor_comments: Annotated[Optional[str], Form()] = None,
    lab_tech_id: Annotated[Optional[str], Form()] = None,
):
    appointment = get_appointment_or_404(appointment_id)
    if donation_results_collection.count_documents({"appointment_id": appointment["_id"]}) > 0:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Results have already been recorded for this appointment.")

    now = utc_now()
    results = {
        "appointment_id": appointment["_id"],
        "volume_ml": volume_ml,
        "cell_count": cell_count,
        "final_vol_ml": final_vol_ml,
        "clots_vol_ml": clots_vol_ml,
        "lot_number": lot_number,
        "doctor_id": doctor_id,
        "doctor_comments": doctor_comments,
        "lab_tech_id": lab_tech_id,
        "created_by": current_user["id"],
        "created_at": now,
        "updated_at": now,
    }
    result = donation_results_collection.insert_one(results)

    appointments_collection.update_one(
        {"_id": appointment["_id"]},
        {"$set": {"status": AppointmentStatus.COMPLETED.value, "updated_at": now}},
    )
    donors_collection.update_one(
        {"_id": appointment["donor_id"]},
        {"$set": {"last_donation_date": as_utc(appointment["appointment_date"]).date().isoformat(), "updated_at": now}},
    )

    # Mandatory post-donation call
    follow_up_id = None
    try:
        follow_up_id = follow_ups_collection.insert_one({
            "appointment_id": appointment["_id"],
            "donor_id": appointment["donor_id"],
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }).inserted_id
    except PyMongoError as e:
        logger.error("Error creating follow-up for appointment %s: %s", appointment["_id"], e)

    log_activity("donation_results_recorded", "appointment", appointment["_id"], current_user["id"],
                 donor_id=appointment["donor_id"], details={"volume_ml": volume_ml})
    return {
        "message": "Results recorded.",
        "id": str(result.inserted_id),
        "follow_up_id": str(follow_up_id) if follow_up_id else None,
    }


def _user_names(user_ids) -> dict:
    ids = [ObjectId(uid) for uid in user_ids if ObjectId.is_valid(uid)]
    return {
        str(u["_id"]): u.get("full_name")
        for u in users_collection.find({"_id": {"$in": ids}}, {"full_name": 1})
    }


@appointments_router.get("/donors/{donor_id}/results", tags=["Donation Results"], dependencies=[Depends(can_read)])
def list_donor_results(donor_id: str):
    donor = get_donor_or_404(donor_id)
    appointments = {a["_id"]: a for a in appointments_collection.find({"donor_id": donor["_id"]})}

    results = list(
        donation_results_collection.find({"appointment_id": {"$in": list(appointments)}}).sort("created_at", -1)
    )
    names = _user_names({r.get("doctor_id") for r in results} | {r.get("lab_tech_id") for r in results})
    for result in results:
        appointment = appointments[result["appointment_id"]]
        result["appointment"] = {
            "appointment_date": appointment["appointment_date"],
            "donor_letter": appointment.get("donor_letter"),
        }
        result["doctor_name"] = names.get(result.get("doctor_id"))
        result["lab_tech_name"] = names.get(result.get("lab_tech_id"))

    # Completed visits still waiting for lab numbers
    with_results = {r["appointment_id"] for r in results}
    awaiting = sorted(
        (
            {
                "id": str(a["_id"]),
                "appointment_date": a["appointment_date"],
                "donor_letter": a.get("donor_letter"),
                "appointment_type": a.get("appointment_type"),
            }
            for a in appointments.values()
            if a.get("status") == AppointmentStatus.COMPLETED.value and a["_id"] not in with_results
        ),
        key=lambda a: a["appointment_date"],
        reverse=True,
    )

    cell_counts = [r["cell_count"] for r in results if r.get("cell_count")]
    return {
        "results": [replace_mongo_id(r) for r in results],
        "awaiting_results": awaiting,
        "total_donations": len(results),
        "total_volume_ml": sum(r.get("final_vol_ml") or r.get("volume_ml") or 0 for r in results),
        "average_cell_count": sum(cell_counts) / len(cell_counts) if cell_counts else None,
    }


@appointments_router.patch("/donation-results/{result_id}", tags=["Donation Results"])
def edit_donation_results(
    result_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    volume_ml: Annotated[Optional[float], Form(gt=0)] = None,
    cell_count: Annotated[Optional[float], Form()] = None,
    final_vol_ml: Annotated[Optional[float], Form()] = None,
    clots_vol_ml: Annotated[Optional[float], Form()] = None,
    lot_number: Annotated[Optional[str], Form()] = None,
    doctor_id: Annotated[Optional[str], Form()] = None,
    doctor_comments: Annotated[Optional[str], Form()] = None,
    lab_tech_id: Annotated[Optional[str], Form()] = None,
):
    result = donation_results_collection.find_one({"_id": to_object_id(result_id, "Donation result")})
    if not result:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Donation result not found.")

    changes = {
        "volume_ml": volume_ml,
        "cell_count": cell_count,
        "final_vol_ml": final_vol_ml,
        "clots_vol_ml": clots_vol_ml,
        "lot_number": lot_number,
        "doctor_id": doctor_id,
        "doctor_comments": doctor_comments,
        "lab_tech_id": lab_tech_id,
    }
    update_data = {k: v for k, v in changes.items() if v is not None}
    if not update_data:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No update fields provided.")

    update_data["updated_at"] = utc_now()
    donation_results_collection.update_one({"_id": result["_id"]}, {"$set": update_data})

    appointment = appointments_collection.find_one({"_id": result["appointment_id"]}, {"donor_id": 1})
    log_activity("donation_results_updated", "donation_result", result["_id"], current_user["id"],
                 donor_id=appointment["donor_id"] if appointment else None,
                 details={"fields": sorted(k for k in update_data if k != "updated_at")})
    return replace_mongo_id(donation_results_collection.find_one({"_id": result["_id"]}))
