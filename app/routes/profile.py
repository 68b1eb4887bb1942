"""
Profile endpoints: create, read, update tier and usage stats.
"""

import logging

from fastapi import APIRouter, Depends, status

from app.auth import AuthenticatedUser, get_current_user
from app.exceptions import ConflictError, ErrorCode, ResourceNotFoundError
from app.models import CreateProfileRequest, ErrorResponse, UpdateProfileRequest
from src.profiles.service import (
    ProfileExists,
    ProfileNotFound,
    ProfileService,
    get_profile_service,
)
from src.types.usage import UsageStats, UserProfile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["profile"])


def _not_found() -> ResourceNotFoundError:
    return ResourceNotFoundError(
        "Profile not found",
        resource_type="profile",
        error_code=ErrorCode.PROFILE_NOT_FOUND,
    )


@router.post(
    "",
    response_model=UserProfile,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Profile already exists"}},
)
async def create_profile(
    body: CreateProfileRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
) -> UserProfile:
    try:
        return await profiles.create(user.user_id, body.email, body.tier)
    except ProfileExists:
        raise ConflictError(
            "Profile already exists",
            resource_type="profile",
            error_code=ErrorCode.PROFILE_EXISTS,
        )


@router.get(
    "",
    response_model=UserProfile,
    responses={404: {"model": ErrorResponse}},
)
async def get_profile(
    user: AuthenticatedUser = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
) -> UserProfile:
    try:
        return await profiles.get(user.user_id)
    except ProfileNotFound:
        raise _not_found()


@router.put(
    "",
    response_model=UserProfile,
    responses={404: {"model": ErrorResponse}},
)
async def update_profile(
    body: UpdateProfileRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
) -> UserProfile:
    """Update the caller's tier. A null tier leaves it unchanged."""
    try:
        return await profiles.update_tier(user.user_id, body.tier)
    except ProfileNotFound:
        raise _not_found()


@router.get(
    "/usage",
    response_model=UsageStats,
    responses={404: {"model": ErrorResponse}},
)
async def get_usage(
    user: AuthenticatedUser = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
) -> UsageStats:
    """Current counters and limits, after any pending daily reset."""
    try:
        return await profiles.usage(user.user_id)
    except ProfileNotFound:
        raise _not_found()
