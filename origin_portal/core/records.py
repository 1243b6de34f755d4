"""
Typed records for application data and transaction metadata.

These replace free-form dictionaries so required and optional fields are
explicit.
"""
import uuid
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

APPLICATION_TYPE = "STATE_OF_ORIGIN"


class ApplicationDetails(BaseModel):
    """Origin details captured for a certificate application."""

    model_config = ConfigDict(str_strip_whitespace=True)

    state_of_origin: str = Field(..., min_length=1, max_length=100)
    local_government: str = Field(..., min_length=1, max_length=100)
    address: str = Field(..., min_length=1)
    nationality: str = Field(default="Nigerian", min_length=1, max_length=100)
    nin: str = Field(..., description="National Identification Number (11 digits)")

    @field_validator("nin")
    @classmethod
    def validate_nin(cls, v: str) -> str:
        if not (v.isdigit() and len(v) == 11):
            raise ValueError("NIN must be exactly 11 digits")
        return v


class ApplicationDetailsUpdate(BaseModel):
    """Partial update of origin details; unset fields are left alone."""

    model_config = ConfigDict(str_strip_whitespace=True)

    state_of_origin: Optional[str] = Field(default=None, min_length=1, max_length=100)
    local_government: Optional[str] = Field(default=None, min_length=1, max_length=100)
    address: Optional[str] = Field(default=None, min_length=1)
    nationality: Optional[str] = Field(default=None, min_length=1, max_length=100)
    nin: Optional[str] = None

    @field_validator("nin")
    @classmethod
    def validate_nin(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not (v.isdigit() and len(v) == 11):
            raise ValueError("NIN must be exactly 11 digits")
        return v


class ApplicantRegistration(ApplicationDetails):
    """Account data plus origin details submitted at registration."""

    first_name: str = Field(..., min_length=1, max_length=100)
    middle_name: Optional[str] = Field(default=None, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8)
    sex: Optional[str] = Field(default=None, max_length=20)
    date_of_birth: Optional[date] = None
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        # bcrypt only looks at the first 72 bytes
        if len(v.encode("utf-8")) > 72:
            raise ValueError("Password must be at most 72 bytes")
        return v

    def details(self) -> ApplicationDetails:
        return ApplicationDetails(
            state_of_origin=self.state_of_origin,
            local_government=self.local_government,
            address=self.address,
            nationality=self.nationality,
            nin=self.nin,
        )


class TransactionMetadata(BaseModel):
    """Versioned metadata stored on a transaction and echoed to the gateway."""

    version: Literal[1] = 1
    application_type: Literal["STATE_OF_ORIGIN"] = APPLICATION_TYPE
    application_id: uuid.UUID
    user_id: uuid.UUID

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")
