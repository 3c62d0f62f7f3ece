"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_current_user   → decode JWT, return the CurrentUser its claims describe
  require_role(...)  → restrict to specific roles

Users and workspaces live in the main CRM; this service trusts the signed
claims and never looks the user up.
"""

import enum
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.jwt import decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"


@dataclass(frozen=True)
class CurrentUser:
    id: str
    username: str
    role: str
    workspace_id: str


# ── Core user dependency ────────────────────────────────────

async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    workspace_id = payload.get("workspace_id")
    if not workspace_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No workspace context in token",
        )

    return CurrentUser(
        id=user_id,
        username=payload.get("username") or user_id,
        role=payload.get("role", ""),
        workspace_id=workspace_id,
    )


# ── Role-based access control ───────────────────────────────

def require_role(*roles: UserRole):
    """Dependency factory - restrict to one or more roles.

    Usage:
        @router.get("/admin-only")
        async def admin_view(user: CurrentUser = Depends(require_role(UserRole.ADMIN))):
            ...
    """
    allowed = {r.value for r in roles}

    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(r.value for r in roles)}",
            )
        return user

    return _check
