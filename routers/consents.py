import logging
from datetime import timedelta
from enum import Enum
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from typing import Annotated, Dict, List
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError
from db import donor_consents_collection, donors_collection
from dependencies.authz import can_read, can_write
from routers.donors import get_donor_or_404
from services.activity import log_activity
from services.consent_documents import CONSENT_CONTENT, render_signed_consent
from utils import (
    as_utc,
    generate_access_token,
    get_file,
    public_link,
    put_file,
    replace_mongo_id,
    to_object_id,
    utc_now,
)

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = timedelta(days=7)


class ConsentType(str, Enum):
    HIV_TESTING = "hiv_testing"
    BONE_MARROW_DONATION = "bone_marrow_donation"
    GENETIC_TESTING = "genetic_testing"
    RESEARCH_USE = "research_use"
    HIPAA_AUTHORIZATION = "hipaa_authorization"


class ConsentStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"
    REVOKED = "revoked"


class ConsentRequest(BaseModel):
    consent_types: List[ConsentType] = Field(min_length=1)


class ConsentSignature(BaseModel):
    signature_data: str = Field(pattern=r"^data:image/")
    acknowledged: bool


class SignConsentsRequest(BaseModel):
    signatures: Dict[str, ConsentSignature]


consents_router = APIRouter(tags=["Consent Forms"])


def _consents_for_token(token: str) -> list[dict]:
    consents = list(donor_consents_collection.find({"access_token": token}))
    if not consents:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Invalid consent link.")

    if as_utc(consents[0]["token_expires_at"]) < utc_now():
        raise HTTPException(
            status.HTTP_410_GONE,
            "This consent link has expired. Please contact the clinic for a new link.",
        )
    if all(c["status"] == ConsentStatus.SIGNED.value for c in consents):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "All consent forms have already been signed.")
    if any(c["status"] == ConsentStatus.REVOKED.value for c in consents):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            "This consent request has been revoked. Please contact the clinic.",
        )
    return consents


# --- Staff ---
@consents_router.post("/donors/{donor_id}/consents", status_code=status.HTTP_201_CREATED)
def request_consents(donor_id: str, body: ConsentRequest, current_user: Annotated[dict, Depends(can_write)]):
    donor = get_donor_or_404(donor_id)

    token = generate_access_token()
    now = utc_now()
    consent_types = list(dict.fromkeys(t.value for t in body.consent_types))
    donor_consents_collection.insert_many([
        {
            "donor_id": donor["_id"],
            "consent_type": consent_type,
            "access_token": token,
            "token_expires_at": now + TOKEN_LIFETIME,
            "status": ConsentStatus.PENDING.value,
            "created_by": current_user["id"],
            "created_at": now,
            "updated_at": now,
        }
        for consent_type in consent_types
    ])

    log_activity("consent_requested", "donor_consent", token, current_user["id"], donor_id=donor["_id"],
                 details={"consent_types": consent_types})
    return {
        "message": "Consent request created",
        "link": public_link("consent", token),
        "expires_at": (now + TOKEN_LIFETIME).isoformat(),
    }


@consents_router.get("/donors/{donor_id}/consents", dependencies=[Depends(can_read)])
def list_consents(donor_id: str):
    donor = get_donor_or_404(donor_id)
    consents = donor_consents_collection.find(
        {"donor_id": donor["_id"]},
        {"signature_data": 0},
    ).sort("created_at", -1)

    now = utc_now()
    result = []
    for consent in consents:
        consent["title"] = CONSENT_CONTENT[consent["consent_type"]]["title"]
        consent["is_expired"] = as_utc(consent["token_expires_at"]) < now
        consent["link"] = public_link("consent", consent["access_token"])
        result.append(replace_mongo_id(consent))
    return result


@consents_router.post("/donors/{donor_id}/consents/{consent_id}/revoke")
def revoke_consent(donor_id: str, consent_id: str, current_user: Annotated[dict, Depends(can_write)]):
    consent = donor_consents_collection.find_one({
        "_id": to_object_id(consent_id, "Consent"),
        "donor_id": to_object_id(donor_id, "Donor"),
    })
    if not consent:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Consent not found.")
    if consent["status"] != ConsentStatus.PENDING.value:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Only pending consents can be revoked.")

    donor_consents_collection.update_one(
        {"_id": consent["_id"]},
        {"$set": {"status": ConsentStatus.REVOKED.value, "updated_at": utc_now()}},
    )
    log_activity("consent_revoked", "donor_consent", consent["_id"], current_user["id"],
                 donor_id=consent["donor_id"], details={"consent_type": consent["consent_type"]})
    return {"message": "Consent request revoked"}


@consents_router.get("/donors/{donor_id}/consents/{consent_id}/document", dependencies=[Depends(can_read)])
def download_signed_consent(donor_id: str, consent_id: str):
    consent = donor_consents_collection.find_one({
        "_id": to_object_id(consent_id, "Consent"),
        "donor_id": to_object_id(donor_id, "Donor"),
    })
    if not consent or not consent.get("signed_document_path"):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Signed document not found.")

    stored = get_file(consent["signed_document_path"])
    if not stored:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Signed document not found.")

    return Response(
        content=bytes(stored["content"]),
        media_type="text/html",
        headers={"Content-Disposition": f'attachment; filename="consent_{consent["consent_type"]}.html"'},
    )


# --- Public signing page ---
@consents_router.get("/consent/{token}")
def get_consent_request(token: str):
    consents = _consents_for_token(token)
    donor = donors_collection.find_one(
        {"_id": consents[0]["donor_id"]},
        {"donor_id": 1, "first_name": 1, "last_name": 1, "birth_date": 1},
    )
    if not donor:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Donor information not found.")

    pending = [
        {
            "id": str(c["_id"]),
            "consent_type": c["consent_type"],
            "title": CONSENT_CONTENT[c["consent_type"]]["title"],
            "content": CONSENT_CONTENT[c["consent_type"]]["content"],
        }
        for c in consents
        if c["status"] == ConsentStatus.PENDING.value
    ]
    return {"donor": replace_mongo_id(donor), "consents": pending}


@consents_router.post("/consent/{token}/sign")
def sign_consents(token: str, body: SignConsentsRequest, request: Request):
    consents = _consents_for_token(token)
    pending = [c for c in consents if c["status"] == ConsentStatus.PENDING.value]

    for consent in pending:
        signature = body.signatures.get(str(consent["_id"]))
        if not signature or not signature.acknowledged:
            raise HTTPException(
                status.HTTP_400_BAD_REQUEST,
                "Please sign and acknowledge all consent forms before submitting.",
            )

    donor = donors_collection.find_one({"_id": pending[0]["donor_id"]})
    if not donor:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Donor information not found.")
    ip_address = request.client.host if request.client else None

    for consent in pending:
        signature_data = body.signatures[str(consent["_id"])].signature_data
        signed_at = utc_now()
        html = render_signed_consent(consent["consent_type"], donor, signature_data, signed_at)

        document_path = None
        try:
            document_path = put_file(
                f"{donor['_id']}/consent_{consent['consent_type']}_{int(signed_at.timestamp() * 1000)}.html",
                html.encode("utf-8"),
                "text/html",
            )
        except PyMongoError as e:
            logger.warning("Storage upload failed, storing signature only: %s", e)

        donor_consents_collection.update_one(
            {"_id": consent["_id"]},
            {
                "$set": {
                    "status": ConsentStatus.SIGNED.value,
                    "signed_at": signed_at,
                    "signature_data": signature_data,
                    "signed_document_path": document_path,
                    "ip_address": ip_address,
                    "updated_at": signed_at,
                }
            },
        )
        log_activity("consent_signed", "donor_consent", consent["_id"], donor_id=donor["_id"],
                     details={"consent_type": consent["consent_type"]})

    return {"message": "Thank you! Your consent forms have been signed.", "signed": len(pending)}
