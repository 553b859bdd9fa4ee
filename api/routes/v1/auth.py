"""
api/routes/v1/auth.py -- Authentication and second-factor REST endpoints.

Routes:
  POST /api/v1/auth/login           -- password (+ optional code) login
  POST /api/v1/auth/refresh-token   -- new access token from a refresh token
  POST /api/v1/auth/logout          -- stateless; client discards its tokens
  GET  /api/v1/auth/me              -- current user (requires auth)
  POST /api/v1/auth/2fa/enable      -- start TOTP or email setup (requires auth)
  POST /api/v1/auth/2fa/verify      -- confirm setup with a code (requires auth)
  POST /api/v1/auth/2fa/code        -- email a fresh code (requires auth)
  POST /api/v1/auth/2fa/disable     -- turn the factor off (requires auth)

Security:
  [H2] POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT). Account
       lockout after repeated failures is separate and lives in the engine.
  [C1] Unknown email and wrong password are indistinguishable (engine).
  [M5] Cache-Control: no-store on every response that carries tokens.

Engine errors are not caught here. api/errors.py maps them to statuses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccessTokenResponse,
    CodeSentResponse,
    DisabledResponse,
    DisableSecondFactorRequest,
    EnabledResponse,
    EnableSecondFactorRequest,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    SecondFactorSetupResponse,
    TokenPairResponse,
    UserSummary,
    VerifySecondFactorRequest,
)
from auth.dependencies import get_current_user
from auth.engine import AuthEngine
from auth.models import User
from core.config import get_settings

# Auth policy:
# - POST /auth/login, /auth/refresh-token, /auth/logout: public
# - everything else: requires a Bearer access token (get_current_user)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _engine(request: Request) -> AuthEngine:
    return request.app.state.engine


def _summary(user: User) -> UserSummary:
    return UserSummary(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        second_factor_enabled=user.second_factor_enabled,
    )


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password, plus a second-factor code when enabled.

    Returns 200 with requires_2fa=True (and no tokens) when the account has a
    second factor and no code was sent. For the email method a code has just
    been mailed; repeat the call with it.
    """
    result = _engine(request).login(body.email, body.password, body.code)
    if result.challenge_required:
        payload = LoginResponse(
            authenticated=False,
            requires_2fa=True,
            method=result.method,
            user_id=result.user.id,
        )
    else:
        payload = LoginResponse(
            authenticated=True,
            user=_summary(result.user),
            tokens=TokenPairResponse(
                access_token=result.tokens.access_token,
                refresh_token=result.tokens.refresh_token,
                expires_in=result.tokens.expires_in,
            ),
        )
    return _no_store(payload.model_dump())


@router.post("/auth/refresh-token", response_model=AccessTokenResponse)
def refresh_token(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access token reflecting the current user record."""
    engine = _engine(request)
    access = engine.refresh_token(body.refresh_token)
    payload = AccessTokenResponse(access_token=access, expires_in=engine.tokens.access_expire_seconds)
    return _no_store(payload.model_dump())


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Tokens are stateless; the client drops them. Nothing to revoke server-side."""
    return JSONResponse(content={"message": "Logged out."})


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserSummary)
def me(current_user: User = Depends(get_current_user)) -> UserSummary:
    """Return identity information for the currently authenticated user."""
    return _summary(current_user)


@router.post("/auth/2fa/enable", response_model=SecondFactorSetupResponse)
def enable_second_factor(
    request: Request,
    body: EnableSecondFactorRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Begin second-factor setup.

    totp:  returns the secret and otpauth:// URI to load into an authenticator app.
    email: sends the first code to the account address.
    Either way the factor stays off until POST /auth/2fa/verify succeeds.
    """
    setup = _engine(request).enable_second_factor(current_user.id, body.method.value)
    payload = SecondFactorSetupResponse(
        method=setup.method,
        secret=setup.secret,
        otpauth_url=setup.provisioning_uri,
        email_sent=setup.email_sent,
        verified=setup.verified,
    )
    return _no_store(payload.model_dump())


@router.post("/auth/2fa/verify", response_model=EnabledResponse)
def verify_second_factor(
    request: Request,
    body: VerifySecondFactorRequest,
    current_user: User = Depends(get_current_user),
) -> EnabledResponse:
    """Confirm the pending factor with a code from it and switch it on."""
    _engine(request).verify_second_factor_setup(current_user.id, body.code, body.method.value)
    return EnabledResponse()


@router.post("/auth/2fa/code", response_model=CodeSentResponse)
def send_second_factor_code(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> CodeSentResponse:
    """Email a fresh code (resend during setup, or to confirm disabling)."""
    _engine(request).send_second_factor_code(current_user.id)
    return CodeSentResponse()


@router.post("/auth/2fa/disable", response_model=DisabledResponse)
def disable_second_factor(
    request: Request,
    body: DisableSecondFactorRequest,
    current_user: User = Depends(get_current_user),
) -> DisabledResponse:
    """Turn the second factor off. A code for the current factor is required unless disabled in config."""
    _engine(request).disable_second_factor(current_user.id, body.code)
    return DisabledResponse()
