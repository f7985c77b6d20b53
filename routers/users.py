from enum import Enum
from fastapi import APIRouter, Depends, Form, HTTPException, status
from typing import Annotated, Optional
from pydantic import EmailStr
from db import users_collection
from dependencies.authn import authenticated_user
from dependencies.authz import admin_only
from services.activity import log_activity
from utils import replace_mongo_id, to_object_id, utc_now
import bcrypt
import jwt
import os
from datetime import timedelta


class UserRole(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    READONLY = "readonly"


users_router = APIRouter()


def create_user_in_db(user_data: dict):
    email = user_data.get("email")
    password = user_data.get("password")

    # Check if a user with the given email already exists
    if users_collection.count_documents({"email": email}) > 0:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists."
        )

    # Hash the user's password securely using bcrypt
    hashed_password = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    user_data["password"] = hashed_password

    # Add creation timestamp
    user_data["created_at"] = utc_now()
    user_data.setdefault("is_active", True)

    # Save the new user into the database
    result = users_collection.insert_one(user_data)

    return result.inserted_id


# User Login Endpoint
@users_router.post("/users/login", tags=["Users"])
def login_user(
    email: Annotated[EmailStr, Form()],
    password: Annotated[str, Form(min_length=8)],
):
    # Find the user in the database by their email
    user_in_db = users_collection.find_one({"email": email})

    # Unknown email and wrong password answer the same way
    if not user_in_db or not bcrypt.checkpw(password.encode("utf-8"), user_in_db["password"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password.",
        )

    if not user_in_db.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated.",
        )

    #  Prepare the JWT Payload
    payload = {
        "user_id": str(user_in_db["_id"]),
        "role": user_in_db["role"],
        "exp": utc_now() + timedelta(minutes=int(os.getenv("JWT_EXPIRE_MINUTES", "60")))
    }

    # Encode the JWT
    encoded_jwt = jwt.encode(
        payload,
        os.getenv("JWT_SECRET_KEY"),
        algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
    )

    users_collection.update_one({"_id": user_in_db["_id"]}, {"$set": {"last_login_at": utc_now()}})

    return {
        "message": "User logged in successfully!",
        "access_token": encoded_jwt,
        "role": user_in_db["role"],
    }


@users_router.get("/users/me", tags=["Users"])
def get_current_user(current_user: Annotated[dict, Depends(authenticated_user)]):
    return current_user


@users_router.post("/users", tags=["Users"], status_code=status.HTTP_201_CREATED)
def create_staff_user(
    current_user: Annotated[dict, Depends(admin_only)],
    email: Annotated[EmailStr, Form()],
    password: Annotated[str, Form(min_length=8)],
    full_name: Annotated[str, Form()],
    role: Annotated[UserRole, Form()] = UserRole.STAFF,
):
    user_id = create_user_in_db({
        "email": email,
        "password": password,
        "full_name": full_name,
        "role": role.value,
    })
    log_activity("user_created", "user", user_id, current_user["id"], details={"role": role.value})
    return {"message": "User created successfully.", "id": str(user_id)}


@users_router.get("/users", tags=["Users"], dependencies=[Depends(admin_only)])
def list_users():
    users = users_collection.find({}, {"password": 0}).sort("created_at", 1)
    return [replace_mongo_id(u) for u in users]


@users_router.patch("/users/{user_id}", tags=["Users"])
def update_user(
    user_id: str,
    current_user: Annotated[dict, Depends(admin_only)],
    full_name: Annotated[Optional[str], Form()] = None,
    role: Annotated[Optional[UserRole], Form()] = None,
    is_active: Annotated[Optional[bool], Form()] = None,
):
    updates = {}
    if full_name is not None:
        updates["full_name"] = full_name
    if role is not None:
        updates["role"] = role.value
    if is_active is not None:
        if user_id == current_user["id"] and not is_active:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "You cannot deactivate your own account.")
        updates["is_active"] = is_active

    if not updates:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No changes supplied.")

    updates["updated_at"] = utc_now()
    result = users_collection.update_one({"_id": to_object_id(user_id, "User")}, {"$set": updates})
    if result.matched_count == 0:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found.")

    log_activity("user_updated", "user", user_id, current_user["id"], details={k: v for k, v in updates.items() if k != "updated_at"})
    return {"message": "User updated successfully."}
