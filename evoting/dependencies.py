# evoting/dependencies.py
# Request-scoped FastAPI dependencies: admin authentication and role checks.
import logging
from typing import Any, Dict

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from pymongo.database import Database

from evoting.crud import get_admin
from evoting.database.connection import get_db
from evoting.security import decode_access_token

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/admin/login")


def get_current_admin(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Dict[str, Any]:
    """Resolve the bearer token to an active admin document."""
    credentials_error = HTTPException(
        status_code=401,
        detail="Not authorized to access this route",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        raise credentials_error

    admin = get_admin(db, payload["sub"])
    if not admin:
        raise credentials_error
    if admin.get("status") != "active":
        raise HTTPException(status_code=403, detail="Admin account is not active")
    return admin


def require_roles(*roles: str):
    """Dependency factory restricting a route to the given admin roles."""

    def checker(admin: Dict[str, Any] = Depends(get_current_admin)) -> Dict[str, Any]:
        if admin.get("role") not in roles:
            logger.warning(f"Admin {admin.get('email')} denied: role {admin.get('role')} not allowed")
            raise HTTPException(
                status_code=403,
                detail=f"User role {admin.get('role')} is not authorized to access this route",
            )
        return admin

    return checker


require_admin = require_roles(ROLE_ADMIN, ROLE_SUPER_ADMIN)
require_super_admin = require_roles(ROLE_SUPER_ADMIN)


def client_info(request: Request) -> Dict[str, Any]:
    """IP address and user agent for audit entries."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
