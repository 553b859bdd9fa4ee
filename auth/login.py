"""
auth/login.py -- Login orchestrator: credentials -> second factor -> tokens.

State machine (one pass per request, nothing kept between requests):

    START
      -> CREDENTIAL_CHECK
           -> LOCKED                   raise AccountLockedError
           -> INVALID_CREDENTIALS      raise InvalidCredentialsError
           -> NO_SECOND_FACTOR  -> AUTHENTICATED
           -> SECOND_FACTOR_REQUIRED
                no code   -> CHALLENGE_ISSUED   (email method: a code is sent first)
                code      -> AUTHENTICATED | INVALID_CODE (raise InvalidSecondFactorCodeError)

Resuming after a challenge needs nothing from memory: the client repeats the
login with the code, and the method/secret/outstanding email code are read
back from the store.

AUTHENTICATED is the only state that calls the TokenIssuer. It is also the
only state that clears the identity's failure counter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from auth.credentials import CredentialValidator
from auth.email_otp import EmailOTPManager
from auth.limiter import AttemptDecision, AttemptLimiter
from auth.models import SecondFactorMethod, TokenPair, User
from auth.store import normalize_email
from auth.tokens import TokenIssuer
from auth.totp import TOTPVerifier
from core.errors import AccountLockedError, InvalidCredentialsError, InvalidSecondFactorCodeError


class LoginState(str, Enum):
    START = "start"
    CREDENTIAL_CHECK = "credential_check"
    LOCKED = "locked"
    INVALID_CREDENTIALS = "invalid_credentials"
    NO_SECOND_FACTOR = "no_second_factor"
    SECOND_FACTOR_REQUIRED = "second_factor_required"
    CHALLENGE_ISSUED = "challenge_issued"
    INVALID_CODE = "invalid_code"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class LoginResult:
    """Non-error outcome of a login call.

    state is AUTHENTICATED (tokens set) or CHALLENGE_ISSUED (method set).
    """

    state: LoginState
    user: User
    tokens: TokenPair | None = None
    method: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.state is LoginState.AUTHENTICATED

    @property
    def challenge_required(self) -> bool:
        return self.state is LoginState.CHALLENGE_ISSUED


class LoginOrchestrator:
    def __init__(
        self,
        credentials: CredentialValidator,
        limiter: AttemptLimiter,
        totp: TOTPVerifier,
        email_otp: EmailOTPManager,
        tokens: TokenIssuer,
        logger: logging.Logger,
    ) -> None:
        self.credentials = credentials
        self.limiter = limiter
        self.totp = totp
        self.email_otp = email_otp
        self.tokens = tokens
        self._log = logger

    def login(self, email: str, password: str, code: str | None = None) -> LoginResult:
        identity = normalize_email(email)
        state = LoginState.CREDENTIAL_CHECK
        try:
            user = self.credentials.validate(identity, password)
        except AccountLockedError:
            self._transition(state, LoginState.LOCKED, None)
            raise
        except InvalidCredentialsError:
            self._transition(state, LoginState.INVALID_CREDENTIALS, None)
            raise

        if not user.second_factor_enabled:
            self._transition(state, LoginState.NO_SECOND_FACTOR, user)
            return self._authenticate(LoginState.NO_SECOND_FACTOR, user, identity)

        state = self._transition(state, LoginState.SECOND_FACTOR_REQUIRED, user)
        if code is None or not code.strip():
            if user.second_factor_method == SecondFactorMethod.email.value:
                self.email_otp.issue(user, purpose="login")
            self._transition(state, LoginState.CHALLENGE_ISSUED, user)
            return LoginResult(state=LoginState.CHALLENGE_ISSUED, user=user, method=user.second_factor_method)

        valid = self.verify_code(user, code)
        # The outcome is only acted on once the limiter has admitted this attempt.
        decision = self.limiter.record_and_check(identity, success=valid)
        if decision is AttemptDecision.LOCKOUT:
            self._transition(state, LoginState.LOCKED, user)
            raise AccountLockedError(retry_after=self.limiter.retry_after(identity))
        if not valid:
            self._transition(state, LoginState.INVALID_CODE, user)
            raise InvalidSecondFactorCodeError()

        return self._authenticate(state, user, identity)

    def verify_code(self, user: User, code: str) -> bool:
        """Dispatch a submitted code to the verifier for the user's method."""
        method = user.second_factor_method
        if method == SecondFactorMethod.totp.value:
            return self.totp.verify(user.totp_secret, code)
        if method == SecondFactorMethod.email.value:
            return self.email_otp.verify(user.id, code)
        return False

    def _authenticate(self, current: LoginState, user: User, identity: str) -> LoginResult:
        self._transition(current, LoginState.AUTHENTICATED, user)
        self.limiter.reset(identity)
        return LoginResult(state=LoginState.AUTHENTICATED, user=user, tokens=self.tokens.issue(user))

    def _transition(self, current: LoginState, nxt: LoginState, user: User | None) -> LoginState:
        self._log.debug("login %s -> %s (user=%s)", current.value, nxt.value, user.id if user else "-")
        return nxt
