"""WebAuthn request and response models for the ceremony endpoints."""

from typing import Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.models.user_models import filter_transports
from facetime_attendance.utils.error_handling import InputError

logger = get_logger(prefix="[Auth Models]")

BASE64URL_PATTERN: str = r"^[A-Za-z0-9_-]+={0,2}$"

ModelT = TypeVar("ModelT", bound=BaseModel)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AttestationResponseData(_WireModel):
    client_data_json: str = Field(..., alias="clientDataJSON", pattern=BASE64URL_PATTERN)
    attestation_object: str = Field(..., alias="attestationObject", pattern=BASE64URL_PATTERN)
    transports: List[str] = Field(default_factory=list)

    @field_validator("transports", mode="before")
    @classmethod
    def drop_unknown_transports(cls, v):
        return filter_transports(v)


class AssertionResponseData(_WireModel):
    client_data_json: str = Field(..., alias="clientDataJSON", pattern=BASE64URL_PATTERN)
    authenticator_data: str = Field(..., alias="authenticatorData", pattern=BASE64URL_PATTERN)
    signature: str = Field(..., pattern=BASE64URL_PATTERN)
    user_handle: Optional[str] = Field(None, alias="userHandle")


class _PublicKeyCredential(_WireModel):
    id: str = Field(..., min_length=1, pattern=BASE64URL_PATTERN)
    raw_id: Optional[str] = Field(None, alias="rawId")
    type: Literal["public-key"]
    client_extension_results: Dict[str, Any] = Field(default_factory=dict, alias="clientExtensionResults")
    authenticator_attachment: Optional[str] = Field(None, alias="authenticatorAttachment")

    @model_validator(mode="after")
    def raw_id_matches_id(self):
        if self.raw_id is not None and self.raw_id != self.id:
            raise ValueError("rawId does not match id")
        return self


class RegistrationCredential(_PublicKeyCredential):
    """Serialized result of ``navigator.credentials.create()``."""

    response: AttestationResponseData


class AuthenticationCredential(_PublicKeyCredential):
    """Serialized result of ``navigator.credentials.get()``."""

    response: AssertionResponseData


class RegisterVerifyRequest(_WireModel):
    username: str = Field(..., min_length=1)
    reg_resp: RegistrationCredential = Field(..., alias="regResp")


class LoginVerifyRequest(_WireModel):
    username: str = Field(..., min_length=1)
    auth_resp: AuthenticationCredential = Field(..., alias="authResp")


class RegistrationResult(BaseModel):
    verified: bool
    authenticator: Dict[str, Any]


class AuthenticationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verified: bool
    credential_id: str = Field(..., alias="credentialID")
    counter: int


def coerce_payload(model: Type[ModelT], payload: Union[ModelT, Dict[str, Any]]) -> ModelT:
    """Accept an already-validated model or a raw dict; malformed input is an InputError."""
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, dict):
        raise InputError(f"{model.__name__} payload must be an object")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        logger.info("Rejected %s payload: %s (%s)", model.__name__, first.get("msg"), location)
        raise InputError(f"Malformed {model.__name__}: {location or 'payload'} {first.get('msg', '')}".strip()) from e


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: str = Field(..., description="Human readable reason", examples=["Challenge not found or expired"])
    verified: Optional[bool] = Field(None, description="Present (false) when a WebAuthn ceremony failed")
