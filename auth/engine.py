"""
auth/engine.py -- AuthEngine: the single entry point callers use.

build_engine() wires every component once, handing all of them the same
logger, store and settings. Nothing is re-created per call.

Usage:
    engine = build_engine(get_settings(), UserStore(url), sender)
    result = engine.login("a@x.com", "secret123")
    if result.challenge_required:
        result = engine.login("a@x.com", "secret123", code="123456")
    tokens = result.tokens
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from auth.credentials import CredentialValidator
from auth.email_otp import EmailOTPManager
from auth.limiter import AttemptLimiter
from auth.login import LoginOrchestrator, LoginResult
from auth.models import SecondFactorSetup, User
from auth.second_factor import SecondFactorManager
from auth.store import UserStore
from auth.tokens import TokenIssuer
from auth.totp import TOTPVerifier
from core.config import Settings
from core.errors import TokenInvalidError
from mail.sender import EmailSender


class AuthEngine:
    def __init__(
        self,
        store: UserStore,
        tokens: TokenIssuer,
        orchestrator: LoginOrchestrator,
        second_factor: SecondFactorManager,
        limiter: AttemptLimiter,
        email_otp: EmailOTPManager,
        logger: logging.Logger,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.orchestrator = orchestrator
        self.second_factor = second_factor
        self.limiter = limiter
        self.email_otp = email_otp
        self._log = logger

    def login(self, email: str, password: str, code: str | None = None) -> LoginResult:
        return self.orchestrator.login(email, password, code)

    def refresh_token(self, refresh_token: str) -> str:
        return self.tokens.refresh(refresh_token, self.store)

    def authenticate_access_token(self, token: str) -> User:
        """Resolve a Bearer access token to the current User record."""
        claims = self.tokens.decode_access(token)
        user = self.store.get_by_id(claims["sub"])
        if user is None:
            raise TokenInvalidError()
        return user

    def enable_second_factor(self, user_id: str, method: str) -> SecondFactorSetup:
        return self.second_factor.enable(user_id, method)

    def verify_second_factor_setup(self, user_id: str, code: str, method: str) -> None:
        self.second_factor.verify_setup(user_id, code, method)

    def send_second_factor_code(self, user_id: str) -> None:
        self.second_factor.send_code(user_id)

    def disable_second_factor(self, user_id: str, code: str | None = None) -> None:
        self.second_factor.disable(user_id, code)

    def purge_expired(self) -> tuple[int, int]:
        """Drop expired email codes and lapsed attempt counters."""
        codes = self.email_otp.purge_expired()
        attempts = self.limiter.purge_expired()
        if codes or attempts:
            self._log.info("Purged %d expired codes, %d lapsed attempt counters", codes, attempts)
        return codes, attempts


def build_engine(
    settings: Settings,
    store: UserStore,
    sender: EmailSender,
    logger: logging.Logger | None = None,
    clock: Callable[[], float] = time.time,
) -> AuthEngine:
    """Wire every component once. clock drives code expiry and lockout windows."""
    log = logger or logging.getLogger("tasklane.auth")
    limiter = AttemptLimiter(
        store,
        threshold=settings.login_max_failures,
        window_seconds=settings.login_failure_window_seconds,
        logger=log,
        clock=clock,
    )
    totp = TOTPVerifier(issuer=settings.totp_issuer, valid_window=settings.totp_valid_window, logger=log)
    email_otp = EmailOTPManager(
        store,
        sender,
        code_length=settings.email_otp_length,
        expire_seconds=settings.email_otp_expire_seconds,
        logger=log,
        clock=clock,
    )
    tokens = TokenIssuer(
        access_secret=settings.access_token_secret,
        access_expire_seconds=settings.access_token_expire_seconds,
        refresh_secret=settings.refresh_token_secret,
        refresh_expire_seconds=settings.refresh_token_expire_seconds,
        logger=log,
    )
    orchestrator = LoginOrchestrator(
        credentials=CredentialValidator(store, limiter, log),
        limiter=limiter,
        totp=totp,
        email_otp=email_otp,
        tokens=tokens,
        logger=log,
    )
    second_factor = SecondFactorManager(
        store,
        totp,
        email_otp,
        limiter,
        logger=log,
        disable_requires_code=settings.second_factor_disable_requires_code,
    )
    return AuthEngine(
        store=store,
        tokens=tokens,
        orchestrator=orchestrator,
        second_factor=second_factor,
        limiter=limiter,
        email_otp=email_otp,
        logger=log,
    )
