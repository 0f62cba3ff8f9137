from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Position(str, Enum):
    GOVERNOR = "Governor"
    WOMEN_REPRESENTATIVE = "Women Representative"
    MP = "MP"
    MCA = "MCA"


class CandidateIn(BaseModel):
    fullName: str = Field(..., min_length=3, max_length=100)
    position: Position
    politicalParty: str = Field(..., min_length=2, max_length=100)
    constituency: Optional[str] = None
    ward: Optional[str] = None
    photo: Optional[str] = None
    photoBase64: Optional[str] = None  # raw base64 or a data URL


class CandidateUpdate(BaseModel):
    fullName: Optional[str] = Field(default=None, min_length=3, max_length=100)
    position: Optional[Position] = None
    politicalParty: Optional[str] = Field(default=None, min_length=2, max_length=100)
    constituency: Optional[str] = None
    ward: Optional[str] = None
    photo: Optional[str] = None
    photoBase64: Optional[str] = None
