import os
import secrets
import string
from datetime import datetime, timezone
from functools import lru_cache

from bson.objectid import ObjectId
from bson.errors import InvalidId
from bson.binary import Binary
from dotenv import load_dotenv
from fastapi import HTTPException, status
from google import genai
from pymongo import ReturnDocument

from db import counters_collection, document_files_collection

load_dotenv()

TOKEN_ALPHABET = string.ascii_letters + string.digits


@lru_cache(maxsize=1)
def get_genai_client():
    # Reads GEMINI_API_KEY / GOOGLE_API_KEY from the environment
    return genai.Client()


def genai_model():
    return os.getenv("GEMINI_MODEL", "gemini-2.5-flash")


def replace_mongo_id(doc):

    if isinstance(doc, dict):
        # Handle the primary _id field
        if "_id" in doc:
            doc["id"] = str(doc.pop("_id"))

        # check all other key-value pairs
        for key, value in doc.items():
            doc[key] = replace_mongo_id(value)

    elif isinstance(doc, list):
        # Recursively check items in lists
        doc = [replace_mongo_id(item) for item in doc]

    elif isinstance(doc, ObjectId):
        # Direct conversion for any ObjectId found deep in the structure
        doc = str(doc)

    return doc


def to_object_id(value: str, entity: str = "Record") -> ObjectId:
    """Parse a path/body id, answering 404 for anything that cannot exist."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"{entity} not found.")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # Mongo hands back naive datetimes that are already UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def generate_access_token(length: int = 32) -> str:
    """Random alphanumeric token for consent and questionnaire links."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def next_reference(prefix: str) -> str:
    """Sequential human-facing reference such as WF-000042 or DN-000007."""
    counter = counters_collection.find_one_and_update(
        {"_id": prefix},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"{prefix}-{counter['seq']:06d}"


def public_link(kind: str, token: str) -> str:
    base_url = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
    return f"{base_url}/{kind}/{token}"


# Storage bucket helpers
def put_file(path: str, data: bytes, content_type: str) -> str:
    document_files_collection.update_one(
        {"path": path},
        {
            "$set": {
                "path": path,
                "content": Binary(data),
                "content_type": content_type,
                "size": len(data),
                "uploaded_at": utc_now(),
            }
        },
        upsert=True,
    )
    return path


def get_file(path: str) -> dict | None:
    return document_files_collection.find_one({"path": path})


def delete_file(path: str) -> None:
    document_files_collection.delete_one({"path": path})
