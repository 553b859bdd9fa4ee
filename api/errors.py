"""
api/errors.py -- The one place engine error kinds become HTTP responses.

Routes never catch AuthError to pick a status code. They let it propagate; the
handler below looks up exc.kind in ERROR_STATUS and renders the standard
ErrorResponse envelope. Adding a kind to core.errors.AuthErrorKind without a
row here fails test_every_error_kind_has_a_status.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from core.errors import AccountLockedError, AuthError, AuthErrorKind

logger = logging.getLogger("tasklane.api")

# kind -> (HTTP status, public message)
ERROR_STATUS: dict[AuthErrorKind, tuple[int, str]] = {
    AuthErrorKind.INVALID_CREDENTIALS: (401, "Invalid email or password."),
    AuthErrorKind.ACCOUNT_LOCKED: (423, "Account temporarily locked. Try again later."),
    AuthErrorKind.SECOND_FACTOR_REQUIRED: (401, "A second-factor code is required."),
    AuthErrorKind.INVALID_SECOND_FACTOR_CODE: (401, "Invalid or expired verification code."),
    AuthErrorKind.SECOND_FACTOR_ALREADY_CONFIGURED: (409, "Two-factor authentication is already enabled."),
    AuthErrorKind.SECOND_FACTOR_NOT_CONFIGURED: (409, "Two-factor authentication is not configured."),
    AuthErrorKind.TOKEN_INVALID_OR_EXPIRED: (401, "Invalid or expired token."),
    AuthErrorKind.EMAIL_DELIVERY_FAILED: (502, "Failed to send verification email."),
    AuthErrorKind.USER_NOT_FOUND: (404, "User not found."),
    AuthErrorKind.INFRASTRUCTURE: (503, "Authentication service temporarily unavailable."),
}


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError using the ERROR_STATUS table.

    Public messages come from the table, not from the exception, so internal
    wording never leaks. Locked responses carry Retry-After when known.
    """
    status, message = ERROR_STATUS[exc.kind]
    if status >= 500:
        logger.error("%s on %s %s", exc.kind.value, request.method, request.url.path, exc_info=exc.__cause__)
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.kind.value, message=message)).model_dump(),
    )
    if isinstance(exc, AccountLockedError) and exc.retry_after:
        response.headers["Retry-After"] = str(exc.retry_after)
    response.headers["Cache-Control"] = "no-store"
    return response
