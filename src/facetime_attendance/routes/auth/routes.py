"""
WebAuthn routes for fingerprint registration and login.

Each ceremony is two calls: a GET returning the options for
``navigator.credentials.create()`` / ``.get()`` and a POST verifying the
browser's response. All logic lives in the ceremony services; the relying
party id and expected origin come from configuration only.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.routes.auth.dependencies import get_authentication_ceremony, get_registration_ceremony
from facetime_attendance.routes.auth.models import ErrorResponse, LoginVerifyRequest, RegisterVerifyRequest
from facetime_attendance.routes.auth.services.webauthn.authentication import AuthenticationCeremony
from facetime_attendance.routes.auth.services.webauthn.registration import RegistrationCeremony

logger = get_logger(prefix="[WebAuthn Routes]")

router = APIRouter(prefix="/api", tags=["WebAuthn"])

CEREMONY_ERRORS: Dict[int, Dict[str, Any]] = {
    400: {"description": "Malformed request, missing challenge or failed verification", "model": ErrorResponse},
    404: {"description": "User or authenticator not found", "model": ErrorResponse},
    500: {"description": "Internal server error", "model": ErrorResponse},
}


@router.get(
    "/register-challenge",
    summary="Begin fingerprint registration",
    description="""
    Returns `PublicKeyCredentialCreationOptions` for the named user and stores
    a single-use challenge for them. The user does not need to exist yet.
    """,
    responses={400: CEREMONY_ERRORS[400], 500: CEREMONY_ERRORS[500]},
)
async def register_challenge(
    username: str = Query(..., min_length=1, description="Name of the user enrolling a fingerprint"),
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
) -> JSONResponse:
    options = await ceremony.begin(username)
    return JSONResponse(options)


@router.post(
    "/register-verify",
    summary="Finish fingerprint registration",
    description="""
    Verifies the attestation response produced by `navigator.credentials.create()`
    and stores the new authenticator. The challenge is consumed whether or not
    verification succeeds.
    """,
    responses={**CEREMONY_ERRORS, 409: {"description": "Authenticator already registered", "model": ErrorResponse}},
)
async def register_verify(
    payload: RegisterVerifyRequest,
    ceremony: RegistrationCeremony = Depends(get_registration_ceremony),
) -> JSONResponse:
    result = await ceremony.complete(payload.username, payload.reg_resp)
    return JSONResponse(result.model_dump(by_alias=True))


@router.get(
    "/login-challenge",
    summary="Begin fingerprint login",
    description="""
    Returns `PublicKeyCredentialRequestOptions` listing the user's registered
    authenticators. Fails with 404 when the user is unknown or has none.
    """,
    responses=CEREMONY_ERRORS,
)
async def login_challenge(
    username: str = Query(..., min_length=1, description="Name of the user logging in"),
    ceremony: AuthenticationCeremony = Depends(get_authentication_ceremony),
) -> JSONResponse:
    options = await ceremony.begin(username)
    return JSONResponse(options)


@router.post(
    "/login-verify",
    summary="Finish fingerprint login",
    description="""
    Verifies the assertion produced by `navigator.credentials.get()` and
    advances the authenticator's signature counter.
    """,
    responses=CEREMONY_ERRORS,
)
async def login_verify(
    payload: LoginVerifyRequest,
    ceremony: AuthenticationCeremony = Depends(get_authentication_ceremony),
) -> JSONResponse:
    result = await ceremony.complete(payload.username, payload.auth_resp)
    return JSONResponse(result.model_dump(by_alias=True))
