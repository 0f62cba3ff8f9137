from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, constr


class AdminBase(BaseModel):
    email: EmailStr
    fullName: str = Field(..., min_length=3)
    role: constr(pattern="^(admin|super_admin)$") = "admin"


class AdminCreate(AdminBase):
    password: str = Field(..., min_length=8)


class AdminOut(AdminBase):
    id: str  # this will store MongoDB _id as string
    status: str
    lastLogin: Optional[datetime] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PasswordChange(BaseModel):
    currentPassword: str
    newPassword: str = Field(..., min_length=8)


def admin_out(admin: dict) -> AdminOut:
    return AdminOut(
        id=str(admin["_id"]),
        email=admin["email"],
        fullName=admin.get("fullName") or admin["email"],
        role=admin.get("role", "admin"),
        status=admin.get("status", "active"),
        lastLogin=admin.get("lastLogin"),
    )
