import logging
from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from typing import Annotated, Dict, Optional, Union
from pydantic import BaseModel
import requests
from db import appointments_collection, donors_collection, follow_ups_collection, voice_ai_settings_collection
from dependencies.authz import admin_only, can_read, has_permission
from routers.follow_ups import get_follow_up_or_404
from services.activity import log_activity
from services.ai import parse_transcript
from services.retell import (
    PROMPT_SETTING_KEYS,
    RetellError,
    build_dynamic_variables,
    create_phone_call,
    parse_webhook,
    retell_credentials,
    to_e164,
)
from utils import replace_mongo_id, utc_now

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "enabled": "true",
    "agent_name": "Sarah",
    "greeting_template": "",
    "closing_message": "",
    **{key: "" for key in PROMPT_SETTING_KEYS},
    "max_call_duration_seconds": "300",
}

FAILED_DISCONNECTIONS = ("no_answer", "busy", "voicemail")


class InitiateCallRequest(BaseModel):
    follow_up_id: Optional[str] = None


voice_ai_router = APIRouter(tags=["Voice AI"])


def load_settings() -> dict:
    settings = dict(DEFAULT_SETTINGS)
    for row in voice_ai_settings_collection.find():
        settings[row["setting_key"]] = row["setting_value"]
    return settings


def _setting_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@voice_ai_router.get("/voice-ai/settings", dependencies=[Depends(can_read)])
def get_settings():
    return load_settings()


@voice_ai_router.put("/voice-ai/settings")
def update_settings(
    changes: Annotated[Dict[str, Union[bool, int, str]], Body()],
    current_user: Annotated[dict, Depends(admin_only)],
):
    unknown = sorted(set(changes) - set(DEFAULT_SETTINGS))
    if unknown:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Unknown settings: {', '.join(unknown)}")
    if not changes:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No settings supplied.")

    now = utc_now()
    for key, value in changes.items():
        voice_ai_settings_collection.update_one(
            {"setting_key": key},
            {"$set": {"setting_value": _setting_text(value), "updated_at": now}},
            upsert=True,
        )

    log_activity("voice_ai_settings_updated", "voice_ai_settings", user_id=current_user["id"],
                 details={"keys": sorted(changes)})
    return {"message": "Settings saved.", "settings": load_settings()}


@voice_ai_router.post("/retell/initiate-call")
def initiate_call(
    body: InitiateCallRequest,
    current_user: Annotated[dict, Depends(has_permission("initiate_ai_calls"))],
):
    if not body.follow_up_id:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "follow_up_id is required")

    credentials = retell_credentials()
    if credentials is None:
        logger.error("Missing Retell credentials")
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Retell credentials not configured")

    settings = load_settings()
    if settings.get("enabled") != "true":
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Voice AI is disabled")

    follow_up = get_follow_up_or_404(body.follow_up_id)
    donor = donors_collection.find_one({"_id": follow_up["donor_id"]})
    if not donor or not donor.get("cell_phone"):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Donor has no phone number")

    appointment = appointments_collection.find_one({"_id": follow_up.get("appointment_id")})
    dynamic_variables = build_dynamic_variables(
        donor,
        appointment["appointment_date"] if appointment else None,
        settings,
    )
    to_number = to_e164(donor["cell_phone"])
    logger.info("Initiating call to %s for follow-up %s", to_number, follow_up["_id"])

    try:
        call = create_phone_call(
            credentials,
            to_number,
            dynamic_variables,
            {"follow_up_id": str(follow_up["_id"]), "donor_id": str(donor["_id"])},
        )
    except RetellError as e:
        logger.error("Retell API error: %s", e.details)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to initiate call", "details": e.details},
        )
    except requests.RequestException as e:
        logger.error("Retell API unreachable: %s", e)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Voice API is unreachable.")

    follow_ups_collection.update_one(
        {"_id": follow_up["_id"]},
        {
            "$set": {
                "ai_call_id": call.get("call_id"),
                "ai_call_status": "initiated",
                "ai_called_at": utc_now(),
            }
        },
    )
    log_activity("ai_call_initiated", "follow_up", follow_up["_id"], current_user["id"],
                 donor_id=donor["_id"], details={"call_id": call.get("call_id")})

    return {"success": True, "call_id": call.get("call_id"), "message": "Call initiated successfully"}


@voice_ai_router.post("/retell/webhook")
def retell_webhook(payload: Annotated[dict, Body()]):
    event = parse_webhook(payload)
    if not event["call_id"]:
        logger.info("No call_id in payload, ignoring")
        return {"received": True}

    follow_up = follow_ups_collection.find_one({"ai_call_id": event["call_id"]})
    if not follow_up:
        logger.warning("Follow-up not found for call_id: %s", event["call_id"])
        return {"received": True, "warning": "Follow-up not found"}

    logger.info("Processing %s for follow-up %s", event["event"], follow_up["_id"])

    if event["event"] == "call_started":
        follow_ups_collection.update_one(
            {"_id": follow_up["_id"]},
            {"$set": {"ai_call_status": "in_progress"}},
        )

    elif event["event"] in ("call_ended", "call_analyzed"):
        call_ended = event["call_status"] == "ended"
        update_data = {
            "ai_call_status": "completed" if call_ended else event["call_status"],
            "ai_call_duration_ms": event["duration_ms"],
            "ai_recording_url": event["recording_url"],
            "ai_call_summary": event["call_analysis"] or None,
        }
        if event["transcript"]:
            update_data["ai_transcript"] = event["transcript"]

        if event["transcript"] and call_ended:
            parsed = parse_transcript(event["transcript"])
            if parsed:
                update_data["ai_parsed_responses"] = parsed
                if parsed.get("call_successful") is False:
                    update_data["ai_call_status"] = "callback_requested"
                    update_data["status"] = "callback_requested"
                    logger.info("Callback requested by donor for follow-up %s", follow_up["_id"])
                elif parsed.get("call_successful") is True:
                    update_data["ai_call_status"] = "completed"

        if event["disconnection_reason"] in FAILED_DISCONNECTIONS:
            update_data["ai_call_status"] = "failed"

        update_data["updated_at"] = utc_now()
        follow_ups_collection.update_one({"_id": follow_up["_id"]}, {"$set": update_data})
        log_activity("ai_call_updated", "follow_up", follow_up["_id"], donor_id=follow_up["donor_id"],
                     details={"event": event["event"], "ai_call_status": update_data["ai_call_status"]})

    return {"received": True, "processed": True}


@voice_ai_router.get("/follow-ups/{follow_up_id}/ai-call", dependencies=[Depends(can_read)])
def get_ai_call_details(follow_up_id: str):
    follow_up = get_follow_up_or_404(follow_up_id)
    if not follow_up.get("ai_call_id"):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No AI call has been made for this follow-up.")

    fields = (
        "ai_call_id",
        "ai_call_status",
        "ai_called_at",
        "ai_call_duration_ms",
        "ai_recording_url",
        "ai_call_summary",
        "ai_transcript",
        "ai_parsed_responses",
    )
    details = {key: follow_up.get(key) for key in fields}
    details["follow_up_id"] = str(follow_up["_id"])
    details["status"] = follow_up["status"]
    return replace_mongo_id(details)
