"""Request and response models for user management."""

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from facetime_attendance.models.user_models import validate_descriptor


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RegisterUserRequest(_Request):
    name: Optional[str] = None
    descriptor: Optional[List[float]] = Field(
        None, validation_alias=AliasChoices("descriptor", "faceDescriptor")
    )

    @field_validator("descriptor")
    @classmethod
    def descriptor_is_finite(cls, v):
        return validate_descriptor(v)


class EditUserRequest(_Request):
    old_name: Optional[str] = Field(None, alias="oldName")
    new_name: Optional[str] = Field(None, alias="newName")


class DeleteUserRequest(_Request):
    name: Optional[str] = None


class UserActionResponse(BaseModel):
    success: bool = True
    message: str
