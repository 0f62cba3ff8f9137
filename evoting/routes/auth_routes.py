from typing import Any, Dict

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from pymongo.database import Database

from evoting.audit import AuditLog
from evoting.crud import change_password, login_admin
from evoting.database.connection import get_db
from evoting.dependencies import client_info, get_current_admin
from evoting.schemas import AdminOut, PasswordChange, Token, admin_out
from evoting.security import create_access_token

router = APIRouter(prefix="/auth", tags=["Auth"])


# OAuth2 password flow: the form field is called "username" but carries the email
@router.post("/admin/login", response_model=Token)
def admin_login(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    db: Database = Depends(get_db),
):
    admin, error = login_admin(db, username, password)
    if error:
        raise HTTPException(status_code=401, detail=error)
    token = create_access_token({"sub": str(admin["_id"]), "email": admin["email"], "role": admin["role"]})
    AuditLog(db).record(admin["_id"], "LOGIN", "Admin", admin["_id"], {}, **client_info(request))
    return {"access_token": token, "token_type": "bearer"}


@router.get("/admin/me", response_model=AdminOut)
def current_admin(admin: Dict[str, Any] = Depends(get_current_admin)):
    return admin_out(admin)


@router.put("/admin/change-password")
def update_password(
    payload: PasswordChange,
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    error = change_password(db, admin, payload.currentPassword, payload.newPassword)
    if error:
        raise HTTPException(status_code=400, detail=error)
    AuditLog(db).record(admin["_id"], "UPDATE", "Admin", admin["_id"], {"field": "password"}, **client_info(request))
    return {"success": True, "message": "Password changed successfully"}
