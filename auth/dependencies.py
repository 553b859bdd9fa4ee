"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with `Authorization: Bearer <access token>`. The token
is verified by the engine's TokenIssuer and resolved to the current User
record, so a deleted user is rejected even while their token is unexpired.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_role() builds a dependency that additionally checks the role claim.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.engine import AuthEngine
from auth.models import User
from core.errors import TokenInvalidError


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises for bad tokens."""
    token = _bearer_token(request)
    if not token:
        return None
    engine: AuthEngine = request.app.state.engine
    try:
        return engine.authenticate_access_token(token)
    except TokenInvalidError:
        return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_role(*roles: str):
    """Return a dependency that allows only the given roles (HTTP 403 otherwise)."""

    def _dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role not in roles:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient role."},
            )
        return user

    return _dependency
