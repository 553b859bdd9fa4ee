"""
auth/tokens.py -- Access and refresh token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Two independent secrets and lifetimes:
       access  -- short-lived, claims sub (user id), email, role.
       refresh -- long-lived, claims sub only. A stolen refresh token yields
                  nothing but the ability to ask for a new access token, and
                  that request re-reads the user record.

  Stateless: access tokens are never stored server-side. Revocation is not
       supported; a deleted user stops being refreshable immediately, and a
       role change shows up in the next refreshed access token.

  Secrets come from core.config.Settings, which rejects short or identical
  secrets at startup [M6][M8].
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import TokenPair, User
from auth.store import UserStore
from core.errors import TokenInvalidError

_ALGORITHM = "HS256"

_ACCESS_CLAIMS = ("sub", "email", "role", "exp")


class TokenIssuer:
    def __init__(
        self,
        access_secret: str,
        access_expire_seconds: int,
        refresh_secret: str,
        refresh_expire_seconds: int,
        logger: logging.Logger,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_expire_seconds = access_expire_seconds
        self.refresh_expire_seconds = refresh_expire_seconds
        self._log = logger

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def create_access_token(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "email": user.email,
            "role": user.role,
            "iat": now,
            "exp": now + timedelta(seconds=self.access_expire_seconds),
        }
        return jwt.encode(payload, self._access_secret, algorithm=_ALGORITHM)

    def create_refresh_token(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "iat": now,
            "exp": now + timedelta(seconds=self.refresh_expire_seconds),
        }
        return jwt.encode(payload, self._refresh_secret, algorithm=_ALGORITHM)

    def issue(self, user: User) -> TokenPair:
        """Mint a fresh access/refresh pair for an authenticated user."""
        pair = TokenPair(
            access_token=self.create_access_token(user),
            refresh_token=self.create_refresh_token(user),
            expires_in=self.access_expire_seconds,
        )
        self._log.info("Issued token pair for user %s", user.id)
        return pair

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def decode_access(self, token: str) -> dict:
        """Verify an access token and return its claims.

        Raises TokenInvalidError on a bad signature, expiry, or missing claims.
        A refresh token fails here because it is signed with the other secret.
        """
        payload = self._decode(token, self._access_secret)
        if any(claim not in payload for claim in _ACCESS_CLAIMS):
            raise TokenInvalidError()
        return payload

    def decode_refresh(self, token: str) -> dict:
        payload = self._decode(token, self._refresh_secret)
        if not payload.get("sub"):
            raise TokenInvalidError()
        return payload

    def _decode(self, token: str, secret: str) -> dict:
        if not token:
            raise TokenInvalidError()
        try:
            return jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except JWTError as exc:
            # ExpiredSignatureError and JWTClaimsError are JWTError subclasses
            raise TokenInvalidError() from exc

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str, store: UserStore) -> str:
        """Exchange a valid refresh token for a new access token.

        The user is re-read by subject id so the new token carries the
        current email and role. A deleted user gets TokenInvalidError.
        """
        payload = self.decode_refresh(refresh_token)
        user = store.get_by_id(payload["sub"])
        if user is None:
            self._log.warning("Refresh rejected: subject %s no longer exists", payload["sub"])
            raise TokenInvalidError()
        self._log.info("Refreshed access token for user %s", user.id)
        return self.create_access_token(user)
