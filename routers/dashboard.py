from datetime import date, datetime, time, timedelta
from fastapi import APIRouter, Depends, Query
from typing import Annotated, Optional
from bson.objectid import ObjectId
from db import (
    activity_logs_collection,
    appointments_collection,
    donors_collection,
    payments_collection,
    users_collection,
    webform_submissions_collection,
)
from dependencies.authz import can_read
from utils import replace_mongo_id, utc_now

dashboard_router = APIRouter(tags=["Dashboard"], dependencies=[Depends(can_read)])


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    # naive UTC, the form Mongo stores and aggregation $match compares against
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _with_user_names(entries: list[dict]) -> list[dict]:
    user_ids = {e["user_id"] for e in entries if e.get("user_id")}
    names = {
        str(u["_id"]): u.get("full_name") or u.get("email")
        for u in users_collection.find(
            {"_id": {"$in": [ObjectId(uid) for uid in user_ids if ObjectId.is_valid(uid)]}},
            {"full_name": 1, "email": 1},
        )
    }
    for entry in entries:
        entry["user_name"] = names.get(entry.get("user_id"))
    return entries


@dashboard_router.get("/dashboard/metrics")
def get_metrics():
    by_status = {
        row["_id"]: row["count"]
        for row in donors_collection.aggregate([
            {"$group": {"_id": "$eligibility_status", "count": {"$sum": 1}}},
        ])
    }
    return {
        "total_donors": donors_collection.count_documents({}),
        "eligible_donors": by_status.get("eligible", 0),
        "ineligible_donors": by_status.get("ineligible", 0),
        "pending_review_donors": by_status.get("pending_review", 0),
        "pending_approvals": webform_submissions_collection.count_documents({"status": "pending"}),
        "upcoming_appointments": appointments_collection.count_documents({
            "status": "scheduled",
            "appointment_date": {"$gte": utc_now()},
        }),
    }


@dashboard_router.get("/dashboard/weekly")
def get_weekly_activity():
    today = utc_now().date()
    chart = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        start, end = _day_bounds(day)
        chart.append({
            "name": f"{day:%a}",
            "date": day.isoformat(),
            "submissions": webform_submissions_collection.count_documents(
                {"created_at": {"$gte": start, "$lt": end}}
            ),
            "appointments": appointments_collection.count_documents(
                {"appointment_date": {"$gte": start, "$lt": end}}
            ),
        })
    return chart


@dashboard_router.get("/dashboard/eligible-soon")
def get_donors_eligible_soon():
    today = utc_now().date()
    donors = donors_collection.find(
        {
            "next_eligible_date": {
                "$gte": today.isoformat(),
                "$lte": (today + timedelta(weeks=2)).isoformat(),
            }
        },
        {"donor_id": 1, "first_name": 1, "last_name": 1, "next_eligible_date": 1},
    ).sort("next_eligible_date", 1).limit(10)
    return [replace_mongo_id(d) for d in donors]


@dashboard_router.get("/dashboard/recent-activity")
def get_recent_activity():
    entries = list(activity_logs_collection.find().sort("created_at", -1).limit(5))
    return [replace_mongo_id(e) for e in _with_user_names(entries)]


@dashboard_router.get("/activity-logs")
def list_activity_logs(
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=200)] = 50,
):
    query = {}
    if entity_type:
        query["entity_type"] = entity_type
    if action:
        query["action"] = action

    total = activity_logs_collection.count_documents(query)
    entries = list(
        activity_logs_collection.find(query)
        .sort("created_at", -1)
        .skip((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "total": total,
        "page": page,
        "page_size": page_size,
        "logs": [replace_mongo_id(e) for e in _with_user_names(entries)],
    }


@dashboard_router.get("/reports/summary")
def get_report_summary(date_from: Optional[date] = None, date_to: Optional[date] = None):
    created_range = {}
    appointment_range = {}
    if date_from:
        created_range["$gte"] = _day_bounds(date_from)[0]
        appointment_range["$gte"] = _day_bounds(date_from)[0]
    if date_to:
        created_range["$lt"] = _day_bounds(date_to)[1]
        appointment_range["$lt"] = _day_bounds(date_to)[1]

    payment_match = {"check_voided": {"$ne": True}}
    if created_range:
        payment_match["created_at"] = created_range
    payments = {
        row["_id"]: {"total": row["total"], "count": row["count"]}
        for row in payments_collection.aggregate([
            {"$match": payment_match},
            {"$group": {"_id": "$payment_type", "total": {"$sum": "$amount"}, "count": {"$sum": 1}}},
        ])
    }

    appointment_match = {"appointment_date": appointment_range} if appointment_range else {}
    appointments = {
        row["_id"]: row["count"]
        for row in appointments_collection.aggregate([
            {"$match": appointment_match},
            {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        ])
    }

    return {
        "date_from": date_from.isoformat() if date_from else None,
        "date_to": date_to.isoformat() if date_to else None,
        "payments_by_type": payments,
        "payments_total": sum(p["total"] for p in payments.values()),
        "appointments_by_status": appointments,
    }
