"""User profile endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from ...db import DatabaseClient
from ..dependencies import get_authenticated_user, get_database
from ..schemas import UserProfile

router = APIRouter()


@router.get("/profile/me", response_model=UserProfile, status_code=status.HTTP_200_OK)
def get_my_profile(
    user: Dict[str, Any] = Depends(get_authenticated_user),
    db: DatabaseClient = Depends(get_database),
) -> UserProfile:
    """Return the authenticated user's profile with its subscription fields."""

    profile = db.get_profile(user["id"])
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User profile not found",
        )

    fields = {key: profile.get(key) for key in UserProfile.model_fields if profile.get(key) is not None}
    fields["id"] = user["id"]
    if not fields.get("email"):
        fields["email"] = user.get("email")
    return UserProfile(**fields)
