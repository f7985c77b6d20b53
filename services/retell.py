# Retell voice API client for post-donation follow-up calls

import os
import re
from datetime import datetime

import requests

DEFAULT_BASE_URL = "https://api.retellai.com"

# Settings rows forwarded to the voice agent as prompt variables
PROMPT_SETTING_KEYS = (
    "question_pain_level",
    "question_current_pain",
    "question_pain_medication",
    "question_aspiration_sites",
    "question_infection_signs",
    "question_unusual_symptoms",
    "question_doctor_rating",
    "question_nurse_rating",
    "question_staff_rating",
    "question_donate_again",
    "question_feedback",
    "escalation_message",
)


class RetellError(Exception):
    def __init__(self, status_code, details):
        super().__init__(f"Retell API returned {status_code}")
        self.status_code = status_code
        self.details = details


def retell_credentials():
    """(api_key, agent_id, from_number), or None when any is missing."""
    api_key = os.getenv("RETELL_API_KEY")
    agent_id = os.getenv("RETELL_AGENT_ID")
    from_number = os.getenv("RETELL_FROM_NUMBER")
    if not api_key or not agent_id or not from_number:
        return None
    return api_key, agent_id, from_number


def to_e164(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    if not digits.startswith("1") and len(digits) == 10:
        digits = "1" + digits
    return "+" + digits


def format_donation_date(appointment_date) -> str:
    if not appointment_date:
        return "your recent donation"
    if not isinstance(appointment_date, datetime):
        appointment_date = datetime.fromisoformat(str(appointment_date))
    # e.g. "Monday, January 5"
    return f"{appointment_date:%A, %B} {appointment_date.day}"


def build_dynamic_variables(donor: dict, appointment_date, settings: dict) -> dict:
    variables = {
        "donor_name": donor["first_name"],
        "donor_full_name": f"{donor['first_name']} {donor['last_name']}",
        "donation_date": format_donation_date(appointment_date),
        "agent_name": settings.get("agent_name") or "Sarah",
        "greeting": settings.get("greeting_template") or "",
        "closing_message": settings.get("closing_message") or "",
    }
    for key in PROMPT_SETTING_KEYS:
        variables[key] = settings.get(key) or ""
    return variables


def create_phone_call(credentials, to_number: str, dynamic_variables: dict, metadata: dict) -> dict:
    api_key, agent_id, from_number = credentials
    base_url = os.getenv("RETELL_BASE_URL", DEFAULT_BASE_URL).rstrip("/")

    payload = {
        "agent_id": agent_id,
        "from_number": from_number,
        "to_number": to_number,
        "retell_llm_dynamic_variables": dynamic_variables,
        "metadata": metadata,
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    response = requests.post(f"{base_url}/v2/create-phone-call", json=payload, headers=headers, timeout=15)
    try:
        data = response.json()
    except ValueError:
        data = {"raw": response.text}

    if not response.ok:
        raise RetellError(response.status_code, data)
    return data


def parse_webhook(payload: dict) -> dict:
    # Normalize webhook payload
    call = payload.get("call") or {}
    return {
        "event": payload.get("event"),
        "call_id": call.get("call_id"),
        "call_status": call.get("call_status"),
        "duration_ms": call.get("duration_ms"),
        "recording_url": call.get("recording_url"),
        "call_analysis": call.get("call_analysis"),
        "transcript": call.get("transcript"),
        "disconnection_reason": call.get("disconnection_reason"),
    }
