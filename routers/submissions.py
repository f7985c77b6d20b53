import logging
from datetime import date, datetime
from enum import Enum
from fastapi import APIRouter, Depends, Form, HTTPException, Query, status
from typing import Annotated, List, Optional
from pydantic import BaseModel, EmailStr
from bson.objectid import ObjectId
from db import donors_collection, screening_rules_collection, webform_submissions_collection
from dependencies.authz import can_read, can_write
from routers.donors import SexType, create_donor_record, get_donor_or_404
from services import ai, screening
from services.activity import log_activity
from utils import next_reference, replace_mongo_id, to_object_id, utc_now

logger = logging.getLogger(__name__)


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    LINKED_TO_DONOR = "linked_to_donor"


class Recommendation(str, Enum):
    SUITABLE = "suitable"
    UNSUITABLE = "unsuitable"
    REVIEW_REQUIRED = "review_required"


class PreferredContact(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    TEXT = "text"


class EvaluationRequest(BaseModel):
    submission_id: Optional[str] = None
    use_ai: bool = False


class LinkableField(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    ADDRESS = "address"


STATUS_MESSAGES = {
    "pending": (
        "Under Review",
        "Your application is currently being reviewed by our team. "
        "We typically complete reviews within 2-3 business days.",
    ),
    "approved": (
        "Approved",
        "Congratulations! Your application has been approved. "
        "Our team will contact you soon to schedule your screening appointment.",
    ),
    "rejected": (
        "Not Eligible",
        "Unfortunately, based on the information provided, you do not meet our eligibility "
        "requirements at this time. If you have questions, please contact us.",
    ),
    "linked_to_donor": (
        "Processed",
        "Your application has been processed and linked to your donor profile. "
        "Our team will be in touch with next steps.",
    ),
}

submissions_router = APIRouter()


def get_submission_or_404(submission_id: str) -> dict:
    submission = webform_submissions_collection.find_one({"_id": to_object_id(submission_id, "Submission")})
    if not submission:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Submission not found.")
    return submission


def active_rules() -> list[dict]:
    return list(screening_rules_collection.find({"is_active": True}).sort("display_order", 1))


def run_evaluation(submission: dict, use_ai: bool = False) -> dict:
    """Score a submission against the active rules and store the result on it."""
    rules = active_rules()
    logger.info("Evaluating submission %s against %d rules", submission["_id"], len(rules))

    today = utc_now().date()
    evaluation = screening.evaluate_submission(submission, rules, today)

    if use_ai and evaluation["recommendation"] == Recommendation.REVIEW_REQUIRED.value:
        derived = screening.derive_fields(submission, today)
        prompt = screening.build_ai_prompt(submission, derived, evaluation["flags"])
        ai_summary = ai.summarize_submission(prompt)
        if ai_summary:
            evaluation["summary"] = ai_summary

    webform_submissions_collection.update_one(
        {"_id": submission["_id"]},
        {
            "$set": {
                "ai_evaluation": evaluation,
                "ai_score": evaluation["score"],
                "ai_recommendation": evaluation["recommendation"],
                "evaluation_flags": evaluation["flags"],
                "evaluated_at": datetime.fromisoformat(evaluation["evaluated_at"]),
            }
        },
    )
    logger.info("Evaluation complete: %s (score: %s)", evaluation["recommendation"], evaluation["score"])
    return evaluation


def _ensure_unreviewed(submission: dict):
    if submission.get("status") != SubmissionStatus.PENDING.value:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Submission has already been {submission.get('status')}.")


# --- Public intake ---
@submissions_router.post("/submissions", tags=["Intake"], status_code=status.HTTP_201_CREATED)
def submit_prescreen_form(
    first_name: Annotated[str, Form(min_length=1)],
    last_name: Annotated[str, Form(min_length=1)],
    phone: Annotated[str, Form(min_length=10)],
    email: Annotated[EmailStr, Form()],
    street_address: Annotated[str, Form(min_length=1)],
    city: Annotated[str, Form(min_length=1)],
    state: Annotated[str, Form(min_length=2)],
    zip_code: Annotated[str, Form(min_length=5)],
    birth_date: Annotated[date, Form()],
    assigned_sex: Annotated[SexType, Form()],
    height_feet: Annotated[int, Form(ge=3, le=8)],
    weight: Annotated[float, Form(gt=0)],
    acknowledge_info_accurate: Annotated[bool, Form()],
    acknowledge_health_screening: Annotated[bool, Form()],
    acknowledge_time_commitment: Annotated[bool, Form()],
    height_inches: Annotated[int, Form(ge=0, le=11)] = 0,
    address_line_2: Annotated[Optional[str], Form()] = None,
    ethnicity: Annotated[Optional[List[str]], Form()] = None,
    preferred_contact: Annotated[PreferredContact, Form()] = PreferredContact.PHONE,
    how_heard: Annotated[Optional[str], Form()] = None,
    availability_notes: Annotated[Optional[str], Form()] = None,
    has_blood_disorder: Annotated[bool, Form()] = False,
    blood_disorder_details: Annotated[Optional[str], Form()] = None,
    has_chronic_illness: Annotated[bool, Form()] = False,
    chronic_illness_details: Annotated[Optional[str], Form()] = None,
    had_surgery: Annotated[bool, Form()] = False,
    surgery_details: Annotated[Optional[str], Form()] = None,
    takes_medications: Annotated[bool, Form()] = False,
    medication_details: Annotated[Optional[str], Form()] = None,
    has_tattoos_piercings: Annotated[bool, Form()] = False,
    tattoo_piercing_details: Annotated[Optional[str], Form()] = None,
    has_been_incarcerated: Annotated[bool, Form()] = False,
    incarceration_details: Annotated[Optional[str], Form()] = None,
    has_traveled_internationally: Annotated[bool, Form()] = False,
    travel_details: Annotated[Optional[str], Form()] = None,
    has_received_transfusion: Annotated[bool, Form()] = False,
    transfusion_details: Annotated[Optional[str], Form()] = None,
    has_been_pregnant: Annotated[Optional[bool], Form()] = None,
    pregnancy_details: Annotated[Optional[str], Form()] = None,
):
    if not (acknowledge_info_accurate and acknowledge_health_screening and acknowledge_time_commitment):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            "All acknowledgements must be accepted before submitting.",
        )

    if birth_date >= date.today():
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Date of birth must be in the past.")

    submission = {
        "submission_id": next_reference("WF"),
        "status": SubmissionStatus.PENDING.value,
        "first_name": first_name.strip(),
        "last_name": last_name.strip(),
        "phone": phone,
        "email": email,
        "street_address": street_address,
        "address_line_2": address_line_2,
        "city": city,
        "state": state,
        "zip_code": zip_code,
        "birth_date": birth_date.isoformat(),
        "assigned_sex": assigned_sex.value,
        "height_feet": height_feet,
        "height_inches": height_inches,
        "weight": weight,
        "ethnicity": ethnicity or [],
        "preferred_contact": preferred_contact.value,
        "how_heard": how_heard,
        "availability_notes": availability_notes,
        "has_blood_disorder": has_blood_disorder,
        "blood_disorder_details": blood_disorder_details,
        "has_chronic_illness": has_chronic_illness,
        "chronic_illness_details": chronic_illness_details,
        "had_surgery": had_surgery,
        "surgery_details": surgery_details,
        "takes_medications": takes_medications,
        "medication_details": medication_details,
        "has_tattoos_piercings": has_tattoos_piercings,
        "tattoo_piercing_details": tattoo_piercing_details,
        "has_been_incarcerated": has_been_incarcerated,
        "incarceration_details": incarceration_details,
        "has_traveled_internationally": has_traveled_internationally,
        "travel_details": travel_details,
        "has_received_transfusion": has_received_transfusion,
        "transfusion_details": transfusion_details,
        "has_been_pregnant": has_been_pregnant,
        "pregnancy_details": pregnancy_details,
        "acknowledge_info_accurate": acknowledge_info_accurate,
        "acknowledge_health_screening": acknowledge_health_screening,
        "acknowledge_time_commitment": acknowledge_time_commitment,
        "created_at": utc_now(),
    }

    result = webform_submissions_collection.insert_one(submission)
    run_evaluation(submission)
    log_activity("submission_received", "webform_submission", result.inserted_id,
                 details={"submission_id": submission["submission_id"]})

    return {
        "message": "Thank you! Your pre-screening form has been received.",
        "submission_id": submission["submission_id"],
        "status": submission["status"],
    }


@submissions_router.get("/submissions/status/{submission_id}", tags=["Intake"])
def lookup_submission_status(submission_id: str):
    reference = submission_id.strip().upper()
    if not reference:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Please enter a submission ID.")

    submission = webform_submissions_collection.find_one(
        {"submission_id": reference},
        {"submission_id": 1, "status": 1, "first_name": 1, "created_at": 1, "reviewed_at": 1},
    )
    if not submission:
        raise HTTPException(
            status.HTTP_404_NOT_FOUND,
            "No application found with this reference number. Please check the ID and try again.",
        )

    label, message = STATUS_MESSAGES.get(
        submission["status"],
        ("Unknown", "Please contact us for more information about your application status."),
    )
    submission.pop("_id")
    return {**submission, "status_label": label, "status_message": message}


# --- Rule evaluation ---
@submissions_router.post("/evaluate-submission", tags=["Screening"], dependencies=[Depends(can_write)])
def evaluate_submission(request: EvaluationRequest):
    if not request.submission_id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "submission_id is required")
    if not ObjectId.is_valid(request.submission_id):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "submission_id is not a valid id")

    submission = get_submission_or_404(request.submission_id)
    evaluation = run_evaluation(submission, use_ai=request.use_ai)
    return {"success": True, "evaluation": evaluation}


@submissions_router.post("/submissions/{submission_id}/evaluate", tags=["Screening"], dependencies=[Depends(can_write)])
def reevaluate_submission(submission_id: str, use_ai: bool = False):
    submission = get_submission_or_404(submission_id)
    return {"success": True, "evaluation": run_evaluation(submission, use_ai=use_ai)}


# --- Review queue ---
@submissions_router.get("/submissions", tags=["Donor Approval"], dependencies=[Depends(can_read)])
def list_submissions(
    submission_status: Annotated[Optional[SubmissionStatus], Query(alias="status")] = None,
    recommendation: Optional[Recommendation] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    skip: Annotated[int, Query(ge=0)] = 0,
):
    query = {}
    if submission_status:
        query["status"] = submission_status.value
    if recommendation:
        query["ai_recommendation"] = recommendation.value

    total = webform_submissions_collection.count_documents(query)
    cursor = webform_submissions_collection.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return {"total": total, "submissions": [replace_mongo_id(s) for s in cursor]}


@submissions_router.get("/submissions/{submission_id}", tags=["Donor Approval"], dependencies=[Depends(can_read)])
def get_submission(submission_id: str):
    return replace_mongo_id(get_submission_or_404(submission_id))


@submissions_router.post("/submissions/{submission_id}/approve", tags=["Donor Approval"])
def approve_submission(
    submission_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    reviewer_notes: Annotated[Optional[str], Form()] = None,
):
    submission = get_submission_or_404(submission_id)
    _ensure_unreviewed(submission)

    height_inches = submission["height_feet"] * 12 + (submission.get("height_inches") or 0)
    donor = create_donor_record(
        {
            "first_name": submission["first_name"],
            "last_name": submission["last_name"],
            "birth_date": submission["birth_date"],
            "assigned_sex": submission["assigned_sex"],
            "email": submission.get("email"),
            "cell_phone": submission.get("phone"),
            "address_line_1": submission.get("street_address"),
            "address_line_2": submission.get("address_line_2"),
            "city": submission.get("city"),
            "state": submission.get("state"),
            "postal_code": submission.get("zip_code"),
            "ethnicity": ", ".join(submission.get("ethnicity") or []) or None,
            "height_inches": height_inches,
            "weight_pounds": submission.get("weight"),
            "bmi": screening.calculate_bmi(submission.get("height_feet"), submission.get("height_inches"),
                                           submission.get("weight")),
            "source_submission_id": submission["_id"],
        },
        current_user["id"],
    )

    webform_submissions_collection.update_one(
        {"_id": submission["_id"]},
        {
            "$set": {
                "status": SubmissionStatus.APPROVED.value,
                "linked_donor_id": donor["_id"],
                "reviewer_id": current_user["id"],
                "reviewer_notes": reviewer_notes,
                "reviewed_at": utc_now(),
            }
        },
    )
    log_activity("submission_approved", "webform_submission", submission["_id"], current_user["id"],
                 donor_id=donor["_id"], details={"submission_id": submission["submission_id"]})

    return {
        "message": f"Submission approved. Donor {donor['donor_id']} created.",
        "donor": replace_mongo_id(donor),
    }


@submissions_router.post("/submissions/{submission_id}/reject", tags=["Donor Approval"])
def reject_submission(
    submission_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    reviewer_notes: Annotated[Optional[str], Form()] = None,
):
    submission = get_submission_or_404(submission_id)
    _ensure_unreviewed(submission)

    webform_submissions_collection.update_one(
        {"_id": submission["_id"]},
        {
            "$set": {
                "status": SubmissionStatus.REJECTED.value,
                "reviewer_id": current_user["id"],
                "reviewer_notes": reviewer_notes,
                "reviewed_at": utc_now(),
            }
        },
    )
    log_activity("submission_rejected", "webform_submission", submission["_id"], current_user["id"],
                 details={"submission_id": submission["submission_id"]})
    return {"message": "Submission rejected."}


def linkable_fields(submission: dict, donor: dict) -> list[dict]:
    """Contact fields where the submission carries newer data than the donor record."""
    fields = []

    if submission.get("phone") and submission["phone"] != donor.get("cell_phone"):
        fields.append({"key": "phone", "label": "Phone", "submission_value": submission["phone"],
                       "donor_value": donor.get("cell_phone")})

    if submission.get("email") and submission["email"] != donor.get("email"):
        fields.append({"key": "email", "label": "Email", "submission_value": submission["email"],
                       "donor_value": donor.get("email")})

    if submission.get("street_address") and submission["street_address"] != donor.get("address_line_1"):
        line_2 = f", {submission['address_line_2']}" if submission.get("address_line_2") else ""
        fields.append({
            "key": "address",
            "label": "Address",
            "submission_value": f"{submission['street_address']}{line_2}, {submission.get('city')}, "
                                f"{submission.get('state')} {submission.get('zip_code')}",
            "donor_value": donor.get("address_line_1"),
        })

    return fields


@submissions_router.get(
    "/submissions/{submission_id}/link-candidates/{donor_id}",
    tags=["Donor Approval"],
    dependencies=[Depends(can_read)],
)
def get_link_candidates(submission_id: str, donor_id: str):
    submission = get_submission_or_404(submission_id)
    donor = get_donor_or_404(donor_id)
    return {"donor_id": donor["donor_id"], "updateable_fields": linkable_fields(submission, donor)}


@submissions_router.post("/submissions/{submission_id}/link", tags=["Donor Approval"])
def link_submission_to_donor(
    submission_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    donor_id: Annotated[str, Form()],
    fields_to_update: Annotated[Optional[List[LinkableField]], Form()] = None,
):
    submission = get_submission_or_404(submission_id)
    _ensure_unreviewed(submission)
    donor = get_donor_or_404(donor_id)

    webform_submissions_collection.update_one(
        {"_id": submission["_id"]},
        {
            "$set": {
                "status": SubmissionStatus.LINKED_TO_DONOR.value,
                "linked_donor_id": donor["_id"],
                "reviewer_id": current_user["id"],
                "reviewed_at": utc_now(),
            }
        },
    )

    selected = set(fields_to_update or [])
    update_data = {}
    if LinkableField.PHONE in selected:
        update_data["cell_phone"] = submission.get("phone")
    if LinkableField.EMAIL in selected:
        update_data["email"] = submission.get("email")
    if LinkableField.ADDRESS in selected:
        update_data["address_line_1"] = submission.get("street_address")
        update_data["address_line_2"] = submission.get("address_line_2")
        update_data["city"] = submission.get("city")
        update_data["state"] = submission.get("state")
        update_data["postal_code"] = submission.get("zip_code")

    if update_data:
        update_data["updated_at"] = utc_now()
        donors_collection.update_one({"_id": donor["_id"]}, {"$set": update_data})

    log_activity("submission_linked", "webform_submission", submission["_id"], current_user["id"],
                 donor_id=donor["_id"], details={"fields_updated": sorted(f.value for f in selected)})

    return {"message": f"Successfully linked to donor {donor['donor_id']}"}
