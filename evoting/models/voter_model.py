import re
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

# 07XXXXXXXX, 01XXXXXXXX, 2547XXXXXXXX or 2541XXXXXXXX once non-digits are stripped
KENYAN_PHONE = re.compile(r"^(?:254|0)[17]\d{8}$")


class VoterIn(BaseModel):
    nationalId: str = Field(..., min_length=5, max_length=20)
    fullName: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    phoneNumber: str
    constituency: str
    ward: str

    @field_validator("nationalId", "fullName", "constituency", "ward")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("phoneNumber")
    @classmethod
    def normalize_phone(cls, value: str) -> str:
        digits = re.sub(r"\D", "", value)
        if not KENYAN_PHONE.match(digits):
            raise ValueError("Please provide a valid Kenyan phone number")
        return digits


class SelfRegistrationIn(VoterIn):
    dateOfBirth: Optional[str] = Field(default=None, description="DD/MM/YYYY")
