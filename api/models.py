"""
API request and response models for Tasklane auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Shape check only. Whether the address exists is never revealed.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SecondFactorMethodEnum(str, Enum):
    totp = "totp"
    email = "email"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    code is omitted on the first call. When the response says a second factor
    is required, the client repeats the call with the code.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=255)
    code: Optional[str] = Field(default=None, max_length=10)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class EnableSecondFactorRequest(BaseModel):
    method: SecondFactorMethodEnum


class VerifySecondFactorRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=4, max_length=10)
    method: SecondFactorMethodEnum


class DisableSecondFactorRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    code: Optional[str] = Field(default=None, max_length=10)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    role: str
    second_factor_enabled: bool


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login.

    Authenticated:       authenticated=True, user and tokens set.
    Challenge required:  requires_2fa=True, method and user_id set.
    """

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    requires_2fa: bool = False
    method: Optional[str] = None
    user_id: Optional[str] = None
    user: Optional[UserSummary] = None
    tokens: Optional[TokenPairResponse] = None


class AccessTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105
    expires_in: int


class SecondFactorSetupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    secret: Optional[str] = None
    otpauth_url: Optional[str] = None
    email_sent: bool = False
    verified: bool = False


class EnabledResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    message: str = "Two-factor authentication has been enabled."


class DisabledResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    disabled: bool = True
    message: str = "Two-factor authentication has been disabled."


class CodeSentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    email_sent: bool = True


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
