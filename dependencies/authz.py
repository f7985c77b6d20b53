from dependencies.authn import authenticated_user
from fastapi import Depends, HTTPException, status
from typing import Annotated


permissions = [
    {
        "role": "admin",
        "permissions": ["*"]
    },
    {
        "role": "staff",
        "permissions": ["read_records",
                        "write_records",
                        "manage_follow_ups",
                        "initiate_ai_calls",
                        ]
    },
    {
        "role": "readonly",
        "permissions": ["read_records"]
    }
]


def has_roles(roles):
    def check_roles(user: Annotated[dict, Depends(authenticated_user)]):
        if user["role"] not in roles:
            raise HTTPException(
                status.HTTP_403_FORBIDDEN, "Access denied!"
            )
        return user

    return check_roles


def has_permission(permission):
    def check_permission(user: Annotated[dict, Depends(authenticated_user)]):
        role = user.get("role")
        for entry in permissions:
            if entry["role"] == role:
                perms = entry.get("permissions", [])
                if "*" in perms or permission in perms:
                    return user
                break
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Permission denied")

    return check_permission


# Shorthands used across the back-office routers
can_read = has_permission("read_records")
can_write = has_permission("write_records")
admin_only = has_roles(["admin"])
