"""
Pydantic models for registered users and their WebAuthn authenticators.

Documents in the users collection are stored with the snake_case field names;
API responses use the camelCase aliases the browser code expects
(``credentialID``, ``credentialPublicKey``).
"""

from datetime import datetime, timezone
import math
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

KNOWN_TRANSPORTS = ("usb", "nfc", "ble", "smart-card", "hybrid", "internal", "cable")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def filter_transports(value: Any) -> List[str]:
    """Keep only transport hints we know; drop the rest silently."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError("transports must be a list of strings")
    kept: List[str] = []
    for hint in value:
        if isinstance(hint, str) and hint in KNOWN_TRANSPORTS and hint not in kept:
            kept.append(hint)
    return kept


def validate_descriptor(value: Optional[List[float]]) -> Optional[List[float]]:
    if value is None:
        return None
    if len(value) == 0:
        raise ValueError("descriptor must not be empty")
    if not all(math.isfinite(component) for component in value):
        raise ValueError("descriptor must contain only finite numbers")
    return value


class Authenticator(BaseModel):
    """A WebAuthn credential registered to a user."""

    model_config = ConfigDict(populate_by_name=True)

    credential_id: str = Field(..., alias="credentialID", min_length=1, description="base64url credential ID")
    public_key: str = Field(
        ..., alias="credentialPublicKey", min_length=1, description="base64url CBOR-encoded COSE public key"
    )
    counter: int = Field(0, ge=0, description="Last accepted signature counter")
    transports: List[str] = Field(default_factory=list, description="Transport hints reported at registration")
    created_at: datetime = Field(default_factory=utc_now)
    last_used_at: Optional[datetime] = None

    @field_validator("transports", mode="before")
    @classmethod
    def drop_unknown_transports(cls, v):
        return filter_transports(v)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump()

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class UserAccount(BaseModel):
    """Database document model for the registered users collection."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, description="Unique user name")
    descriptor: Optional[List[float]] = Field(
        None,
        validation_alias=AliasChoices("descriptor", "faceDescriptor"),
        description="Face descriptor captured at enrolment, stored verbatim",
    )
    authenticators: List[Authenticator] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v

    @field_validator("descriptor")
    @classmethod
    def descriptor_is_finite(cls, v):
        return validate_descriptor(v)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "UserAccount":
        data = {key: value for key, value in document.items() if key != "_id"}
        return cls.model_validate(data)

    def find_authenticator(self, credential_id: str) -> Optional[Authenticator]:
        for authenticator in self.authenticators:
            if authenticator.credential_id == credential_id:
                return authenticator
        return None

    def to_response(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "descriptor": self.descriptor,
            "authenticators": [authenticator.to_response() for authenticator in self.authenticators],
        }
