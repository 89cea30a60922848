"""User directory endpoints used to pick and display conversation partners."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from tibabu_connect.models.user import USER_ROLES
from tibabu_connect.schemas.user import MessagingUsersResponse, UserPublic
from tibabu_connect.services.users import get_user, list_users_for_messaging, public_profile

from ..dependencies import CurrentUserDep, SessionDep

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/messaging", response_model=MessagingUsersResponse)
async def get_users_for_messaging(
    current_user: CurrentUserDep,
    db: SessionDep,
    role: str | None = Query(None, description="Only list users with this role"),
) -> dict[str, Any]:
    """List users the caller can start a conversation with."""
    if role is not None and role not in USER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role '{role}'",
        )
    users = list_users_for_messaging(db, current_user.id, role)
    return {"users": users, "total": len(users)}


@router.get("/{user_id}", response_model=UserPublic)
async def get_public_user(
    user_id: str,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Return the public projection of a single user."""
    user = get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return public_profile(user)
