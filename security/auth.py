"""
Auth — JWT-based authentication with Role-Based Access Control.

Roles (each includes the privileges of the ones below it):
  • Admin   — manages automated-response rules
  • Analyst — pushes events and unblocks addresses
  • Viewer  — reads stats, blocks and rule history only

Demo mode ships with default admin/analyst/viewer credentials.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config.settings import get_settings
from core.exceptions import SecurityError

logger = logging.getLogger(__name__)

security_scheme = HTTPBearer()


class Role(str, Enum):
    """User roles for RBAC."""
    ADMIN = "admin"
    ANALYST = "analyst"
    VIEWER = "viewer"


_ROLE_RANK = {Role.VIEWER: 0, Role.ANALYST: 1, Role.ADMIN: 2}


def role_allows(user_role: str, required_role: Role) -> bool:
    """True if ``user_role`` is ``required_role`` or ranks above it."""
    try:
        role = Role(user_role)
    except ValueError:
        return False
    return _ROLE_RANK[role] >= _ROLE_RANK[required_role]


# ── Demo user store ─────────────────────────────────────────────────────

def _get_users() -> dict[str, dict[str, str]]:
    """Return the user store.  In production, replace with a real DB."""
    settings = get_settings()
    return {
        settings.ADMIN_USERNAME: {
            "password": settings.ADMIN_PASSWORD,
            "role": Role.ADMIN,
        },
        settings.ANALYST_USERNAME: {
            "password": settings.ANALYST_PASSWORD,
            "role": Role.ANALYST,
        },
        settings.VIEWER_USERNAME: {
            "password": settings.VIEWER_PASSWORD,
            "role": Role.VIEWER,
        },
    }


# ── Token management ───────────────────────────────────────────────────

def authenticate_user(username: str, password: str) -> dict[str, Any]:
    """Validate credentials and return user info.

    Raises:
        SecurityError: If credentials are invalid.
    """
    user = _get_users().get(username)
    if not user or user["password"] != password:
        logger.warning("Failed login attempt for user '%s'", username)
        raise SecurityError("Invalid credentials")
    logger.info("User '%s' authenticated (role: %s)", username, user["role"].value)
    return {"username": username, "role": user["role"]}


def create_token(username: str, role: str) -> str:
    """Create a signed JWT token."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": username,
        "role": Role(role).value,
        "exp": now + timedelta(minutes=settings.JWT_EXPIRY_MINUTES),
        "iat": now,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> dict[str, Any]:
    """Verify and decode a JWT token.

    Raises:
        SecurityError: If token is invalid or expired.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return {"username": payload["sub"], "role": payload["role"]}
    except (JWTError, KeyError) as exc:
        raise SecurityError(f"Invalid token: {exc}") from exc


# ── FastAPI dependencies ────────────────────────────────────────────────

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
) -> dict[str, Any]:
    """FastAPI dependency — extract and verify the current user from the JWT."""
    try:
        return verify_token(credentials.credentials)
    except SecurityError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_role(required_role: Role) -> Callable:
    """FastAPI dependency factory — ensure the user holds at least ``required_role``.

    Usage::

        @router.delete("/api/blocked-ips/{ip}")
        async def unblock(ip: str, user = Depends(require_role(Role.ANALYST))):
            ...
    """
    async def role_checker(
        user: dict[str, Any] = Depends(get_current_user),
    ) -> dict[str, Any]:
        user_role = user.get("role", "")
        if not role_allows(user_role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires '{required_role.value}' role. You have '{user_role}'.",
            )
        return user

    return role_checker
