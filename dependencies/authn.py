from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing import Annotated
from bson.objectid import ObjectId
from bson.errors import InvalidId
from db import users_collection
from utils import replace_mongo_id
import jwt
import os

bearer_scheme = HTTPBearer()


def authenticated_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)]
):
    try:
        payload = jwt.decode(
            credentials.credentials,
            os.getenv("JWT_SECRET_KEY"),
            algorithms=[os.getenv("JWT_ALGORITHM", "HS256")],
        )
    except jwt.InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or expired token.")

    try:
        user_id = ObjectId(payload.get("user_id"))
    except (InvalidId, TypeError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or expired token.")

    user = users_collection.find_one({"_id": user_id}, {"password": 0})
    if not user:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "User no longer exists.")
    if not user.get("is_active", True):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Account is deactivated.")

    return replace_mongo_id(user)
