"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and the engine components do the work.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    manager = "manager"
    member = "member"


class SecondFactorMethod(str, Enum):
    none = "none"
    totp = "totp"
    email = "email"


@dataclass
class User:
    """An identity that can log in.

    email is stored lower-cased; the store compares case-insensitively.

    second_factor_method records which factor the user configured (or is in
    the middle of configuring). second_factor_enabled flips to True only after
    a successful verify_setup(), so a user with method=totp and enabled=False
    is in the "pending verification" state and still logs in with a password
    alone.

    totp_secret is the base32 shared secret, present only for method=totp.
    """

    email: str
    hashed_password: str
    role: str = Role.member.value
    name: str = ""
    id: str | None = None
    second_factor_enabled: bool = False
    second_factor_method: str = SecondFactorMethod.none.value
    totp_secret: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class EmailOTPRecord:
    """One outstanding emailed code.

    Timestamps are epoch seconds (UTC). There is no "used" flag: a record is
    consumed by deleting it.
    """

    user_id: str
    code: str
    expires_at: float
    generated_at: float
    id: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int = 0


@dataclass(frozen=True)
class TOTPEnrollment:
    """What an authenticator app needs: the secret and its otpauth:// URI."""

    secret: str
    provisioning_uri: str


@dataclass(frozen=True)
class SecondFactorSetup:
    """Payload returned by SecondFactorManager.enable()."""

    method: str
    secret: str | None = None
    provisioning_uri: str | None = None
    email_sent: bool = False
    verified: bool = False
