from datetime import date
from enum import Enum
from fastapi import APIRouter, Depends, Form, HTTPException, status
from typing import Annotated, Optional
from db import appointments_collection, payments_collection
from dependencies.authz import can_read, can_write
from routers.donors import get_donor_or_404
from services.activity import log_activity
from utils import replace_mongo_id, to_object_id, utc_now


class PaymentType(str, Enum):
    SCREENING = "screening"
    DONATION = "donation"


DEFAULT_AMOUNTS = {
    PaymentType.SCREENING: 150.0,
    PaymentType.DONATION: 450.0,
}

payments_router = APIRouter(tags=["Payments"])


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@payments_router.post("/donors/{donor_id}/payments", status_code=status.HTTP_201_CREATED)
def record_payment(
    donor_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    payment_type: Annotated[PaymentType, Form()],
    amount: Annotated[Optional[float], Form(gt=0)] = None,
    appointment_id: Annotated[Optional[str], Form()] = None,
    check_number: Annotated[Optional[str], Form()] = None,
    check_date: Annotated[Optional[date], Form()] = None,
    received_date: Annotated[Optional[date], Form()] = None,
):
    donor = get_donor_or_404(donor_id)

    appointment_oid = None
    if appointment_id:
        appointment_oid = to_object_id(appointment_id, "Appointment")
        if appointments_collection.count_documents({"_id": appointment_oid, "donor_id": donor["_id"]}) == 0:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Appointment not found.")

    if amount is None:
        amount = DEFAULT_AMOUNTS[payment_type]

    now = utc_now()
    payment = {
        "donor_id": donor["_id"],
        "appointment_id": appointment_oid,
        "payment_type": payment_type.value,
        "amount": amount,
        "check_number": check_number,
        "check_date": _iso(check_date),
        "received_date": _iso(received_date),
        "check_issued": False,
        "check_mailed": False,
        "check_voided": False,
        "created_by": current_user["id"],
        "created_at": now,
        "updated_at": now,
    }
    result = payments_collection.insert_one(payment)
    log_activity("payment_recorded", "payment", result.inserted_id, current_user["id"], donor_id=donor["_id"],
                 details={"payment_type": payment_type.value, "amount": amount})

    return {
        "message": f"${amount:.2f} {payment_type.value} payment saved.",
        "id": str(result.inserted_id),
    }


@payments_router.get("/donors/{donor_id}/payments", dependencies=[Depends(can_read)])
def list_donor_payments(donor_id: str):
    donor = get_donor_or_404(donor_id)
    payments = list(payments_collection.find({"donor_id": donor["_id"]}).sort("created_at", -1))

    totals = {t.value: 0.0 for t in PaymentType}
    for payment in payments:
        if not payment.get("check_voided"):
            totals[payment["payment_type"]] = totals.get(payment["payment_type"], 0.0) + payment["amount"]

    return {
        "payments": [replace_mongo_id(p) for p in payments],
        "totals": totals,
        "total": sum(totals.values()),
    }


@payments_router.patch("/payments/{payment_id}")
def update_check_tracking(
    payment_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    check_number: Annotated[Optional[str], Form()] = None,
    check_date: Annotated[Optional[date], Form()] = None,
    check_issued: Annotated[Optional[bool], Form()] = None,
    check_mailed: Annotated[Optional[bool], Form()] = None,
    check_voided: Annotated[Optional[bool], Form()] = None,
    date_ordered: Annotated[Optional[date], Form()] = None,
    date_issued: Annotated[Optional[date], Form()] = None,
    received_date: Annotated[Optional[date], Form()] = None,
    memo: Annotated[Optional[str], Form()] = None,
    comment: Annotated[Optional[str], Form()] = None,
):
    payment = payments_collection.find_one({"_id": to_object_id(payment_id, "Payment")})
    if not payment:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Payment not found.")

    changes = {
        "check_number": check_number,
        "check_date": _iso(check_date),
        "check_issued": check_issued,
        "check_mailed": check_mailed,
        "check_voided": check_voided,
        "date_ordered": _iso(date_ordered),
        "date_issued": _iso(date_issued),
        "received_date": _iso(received_date),
        "memo": memo,
        "comment": comment,
    }
    update_data = {k: v for k, v in changes.items() if v is not None}
    if not update_data:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No update fields provided.")

    update_data["updated_at"] = utc_now()
    payments_collection.update_one({"_id": payment["_id"]}, {"$set": update_data})
    log_activity("payment_updated", "payment", payment["_id"], current_user["id"], donor_id=payment["donor_id"],
                 details={"fields": sorted(k for k in update_data if k != "updated_at")})
    return replace_mongo_id(payments_collection.find_one({"_id": payment["_id"]}))
