"""
User management routes: enrolment with a face descriptor, listing, rename
and delete. Descriptors are stored verbatim; matching faces is done in the
browser.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from facetime_attendance.managers.credential_store import CredentialStore
from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.models.user_models import UserAccount
from facetime_attendance.routes.auth.dependencies import get_credential_store
from facetime_attendance.routes.auth.models import ErrorResponse
from facetime_attendance.routes.users.models import (
    DeleteUserRequest,
    EditUserRequest,
    RegisterUserRequest,
    UserActionResponse,
)
from facetime_attendance.utils.error_handling import InputError
from facetime_attendance.utils.logging_utils import log_performance

logger = get_logger(prefix="[User Routes]")

router = APIRouter(prefix="/api", tags=["Users"])

BAD_REQUEST = {"description": "Missing or malformed fields", "model": ErrorResponse}
NOT_FOUND = {"description": "User not found", "model": ErrorResponse}


@router.post(
    "/register-user",
    response_model=UserActionResponse,
    summary="Enrol a user with their face descriptor",
    description="""
    Creates the user or replaces their face descriptor. Authenticators already
    registered to an existing user are kept.
    """,
    responses={400: BAD_REQUEST},
)
@log_performance("register_user")
async def register_user(
    payload: RegisterUserRequest, store: CredentialStore = Depends(get_credential_store)
) -> UserActionResponse:
    if not payload.name or not payload.descriptor:
        raise InputError("Missing name or descriptor")

    await store.upsert(UserAccount(name=payload.name, descriptor=payload.descriptor))
    logger.info("User '%s' enrolled (descriptor length %d)", payload.name, len(payload.descriptor))
    return UserActionResponse(message=f"User {payload.name} registered.")


@router.get("/get-users", summary="List registered users")
async def get_users(store: CredentialStore = Depends(get_credential_store)) -> List[Dict[str, Any]]:
    accounts = await store.list_accounts()
    return [account.to_response() for account in accounts]


@router.post(
    "/edit-user",
    response_model=UserActionResponse,
    summary="Rename a user",
    responses={
        400: BAD_REQUEST,
        404: NOT_FOUND,
        409: {"description": "New name already taken", "model": ErrorResponse},
    },
)
async def edit_user(
    payload: EditUserRequest, store: CredentialStore = Depends(get_credential_store)
) -> UserActionResponse:
    if not payload.old_name or not payload.new_name:
        raise InputError("Missing old or new name")

    if payload.old_name == payload.new_name:
        return UserActionResponse(message=f"User name is already {payload.new_name}.")

    await store.rename(payload.old_name, payload.new_name)
    return UserActionResponse(message=f"User {payload.old_name} renamed to {payload.new_name}.")


@router.post(
    "/delete-user",
    response_model=UserActionResponse,
    summary="Delete a user and their authenticators",
    responses={400: BAD_REQUEST, 404: NOT_FOUND},
)
async def delete_user(
    payload: DeleteUserRequest, store: CredentialStore = Depends(get_credential_store)
) -> UserActionResponse:
    if not payload.name:
        raise InputError("Missing name")

    await store.delete(payload.name)
    return UserActionResponse(message=f"User {payload.name} deleted.")
