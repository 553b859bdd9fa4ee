"""
core/errors.py -- Typed error taxonomy for the authentication engine.

Every failure the engine reports is an AuthError subclass carrying a member of
the closed AuthErrorKind enum. Callers branch on `exc.kind` (or the class),
never on message text. The HTTP layer maps kinds to status codes in exactly
one table (api/errors.py).

Layer rule: core/ is the kernel. No imports from api/, auth/ or mail/.
"""

from __future__ import annotations

from enum import Enum


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    SECOND_FACTOR_REQUIRED = "second_factor_required"
    INVALID_SECOND_FACTOR_CODE = "invalid_second_factor_code"
    SECOND_FACTOR_ALREADY_CONFIGURED = "second_factor_already_configured"
    SECOND_FACTOR_NOT_CONFIGURED = "second_factor_not_configured"
    TOKEN_INVALID_OR_EXPIRED = "token_invalid_or_expired"
    EMAIL_DELIVERY_FAILED = "email_delivery_failed"
    USER_NOT_FOUND = "user_not_found"
    INFRASTRUCTURE = "infrastructure"


class AuthError(Exception):
    """Base class. Subclasses pin `kind` and a default message."""

    kind: AuthErrorKind = AuthErrorKind.INFRASTRUCTURE
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidCredentialsError(AuthError):
    """Wrong email or password. Deliberately says nothing about which."""

    kind = AuthErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid email or password."


class AccountLockedError(AuthError):
    kind = AuthErrorKind.ACCOUNT_LOCKED
    default_message = "Account temporarily locked after too many failed attempts."

    def __init__(self, message: str | None = None, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class SecondFactorRequiredError(AuthError):
    """A second-factor code must accompany this request."""

    kind = AuthErrorKind.SECOND_FACTOR_REQUIRED
    default_message = "A second-factor code is required."


class InvalidSecondFactorCodeError(AuthError):
    kind = AuthErrorKind.INVALID_SECOND_FACTOR_CODE
    default_message = "Invalid or expired verification code."


class SecondFactorAlreadyConfiguredError(AuthError):
    kind = AuthErrorKind.SECOND_FACTOR_ALREADY_CONFIGURED
    default_message = "Two-factor authentication is already enabled."


class SecondFactorNotConfiguredError(AuthError):
    kind = AuthErrorKind.SECOND_FACTOR_NOT_CONFIGURED
    default_message = "Two-factor authentication is not configured for this method."


class TokenInvalidError(AuthError):
    kind = AuthErrorKind.TOKEN_INVALID_OR_EXPIRED
    default_message = "Invalid or expired token."


class EmailDeliveryError(AuthError):
    kind = AuthErrorKind.EMAIL_DELIVERY_FAILED
    default_message = "Failed to send verification email."


class UserNotFoundError(AuthError):
    kind = AuthErrorKind.USER_NOT_FOUND
    default_message = "User not found."


class InfrastructureError(AuthError):
    """Backing service unavailable (database down, locked, unreachable).

    Never raised for bad credentials -- a caller must be able to tell
    "try again later" apart from "wrong password".
    """

    kind = AuthErrorKind.INFRASTRUCTURE
    default_message = "Authentication service temporarily unavailable."
