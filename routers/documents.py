import io
import re
from enum import Enum
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse
from typing import Annotated, Optional
from db import donor_documents_collection
from dependencies.authz import can_read, can_write
from routers.donors import get_donor_or_404
from services.activity import log_activity
from utils import delete_file, get_file, put_file, replace_mongo_id, to_object_id, utc_now

MAX_FILE_SIZE = 10 * 1024 * 1024


class DocumentType(str, Enum):
    ID_DOCUMENT = "id_document"
    MEDICAL_RECORD = "medical_record"
    LAB_RESULT = "lab_result"
    CONSENT = "consent"
    OTHER = "other"


documents_router = APIRouter(tags=["Documents"])


def _safe_file_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", name) or "document"


def _get_document_or_404(donor_id: str, document_id: str) -> dict:
    document = donor_documents_collection.find_one({
        "_id": to_object_id(document_id, "Document"),
        "donor_id": to_object_id(donor_id, "Donor"),
    })
    if not document:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Document not found.")
    return document


@documents_router.post("/donors/{donor_id}/documents", status_code=status.HTTP_201_CREATED)
def upload_document(
    donor_id: str,
    current_user: Annotated[dict, Depends(can_write)],
    file: Annotated[UploadFile, File()],
    document_type: Annotated[DocumentType, Form()] = DocumentType.OTHER,
    description: Annotated[Optional[str], Form()] = None,
):
    donor = get_donor_or_404(donor_id)

    data = file.file.read(MAX_FILE_SIZE + 1)
    if len(data) > MAX_FILE_SIZE:
        raise HTTPException(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "File size must be less than 10MB.")
    if not data:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Uploaded file is empty.")

    file_name = file.filename or "document"
    content_type = file.content_type or "application/octet-stream"
    now = utc_now()
    file_path = put_file(
        f"{donor['_id']}/{int(now.timestamp() * 1000)}_{_safe_file_name(file_name)}",
        data,
        content_type,
    )

    document = {
        "donor_id": donor["_id"],
        "document_type": document_type.value,
        "description": description,
        "file_name": file_name,
        "file_path": file_path,
        "file_size": len(data),
        "file_type": content_type,
        "uploaded_by": current_user["id"],
        "created_at": now,
        "updated_at": now,
    }
    result = donor_documents_collection.insert_one(document)
    log_activity("document_uploaded", "donor_document", result.inserted_id, current_user["id"],
                 donor_id=donor["_id"], details={"file_name": file_name})

    return {"message": "Document uploaded.", "id": str(result.inserted_id)}


@documents_router.get("/donors/{donor_id}/documents", dependencies=[Depends(can_read)])
def list_documents(donor_id: str):
    donor = get_donor_or_404(donor_id)
    documents = donor_documents_collection.find({"donor_id": donor["_id"]}).sort("created_at", -1)
    return [replace_mongo_id(d) for d in documents]


@documents_router.get("/donors/{donor_id}/documents/{document_id}/download", dependencies=[Depends(can_read)])
def download_document(donor_id: str, document_id: str):
    document = _get_document_or_404(donor_id, document_id)
    stored = get_file(document["file_path"])
    if not stored:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "File not found in storage.")

    return StreamingResponse(
        io.BytesIO(bytes(stored["content"])),
        media_type=document.get("file_type") or stored.get("content_type"),
        headers={"Content-Disposition": f'attachment; filename="{_safe_file_name(document["file_name"])}"'},
    )


@documents_router.delete("/donors/{donor_id}/documents/{document_id}")
def delete_document(donor_id: str, document_id: str, current_user: Annotated[dict, Depends(can_write)]):
    document = _get_document_or_404(donor_id, document_id)

    delete_file(document["file_path"])
    donor_documents_collection.delete_one({"_id": document["_id"]})
    log_activity("document_deleted", "donor_document", document["_id"], current_user["id"],
                 donor_id=document["donor_id"], details={"file_name": document["file_name"]})
    return {"message": "Document deleted."}
