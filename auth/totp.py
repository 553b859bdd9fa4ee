"""
auth/totp.py -- Authenticator-app (RFC 6238) secrets and code verification.

pyotp does the HOTP/TOTP arithmetic. This module adds input hygiene and pins
the drift tolerance to one configured value.

Drift tolerance:
  valid_window=N accepts the current 30s step plus N steps either side. The
  configured default is 2 (+/- 60s), wider than pyotp's default of 0 and the
  common choice of 1. A wider window means a captured code stays replayable
  for up to ~150s; that is accepted in exchange for fewer lockouts from
  phones with skewed clocks. Login and setup verification use the same value.
"""

from __future__ import annotations

import logging
from datetime import datetime

import pyotp

from auth.models import TOTPEnrollment

_CODE_DIGITS = 6


class TOTPVerifier:
    def __init__(self, issuer: str, valid_window: int, logger: logging.Logger) -> None:
        self.issuer = issuer
        self.valid_window = valid_window
        self._log = logger

    def generate_secret(self, label: str) -> TOTPEnrollment:
        """Create a fresh base32 secret and the otpauth:// URI for enrollment.

        label is shown in the authenticator app next to the issuer, usually
        the user's email address.
        """
        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(name=label, issuer_name=self.issuer)
        return TOTPEnrollment(secret=secret, provisioning_uri=uri)

    def verify(
        self,
        secret: str | None,
        code: str | None,
        window_steps: int | None = None,
        for_time: datetime | float | None = None,
    ) -> bool:
        """Return True if code is valid for secret within +/- window_steps.

        window_steps defaults to the configured tolerance. for_time overrides
        "now" (tests, replaying a recorded request).
        """
        if not secret or not code:
            return False
        candidate = code.strip()
        if len(candidate) != _CODE_DIGITS or not candidate.isdigit():
            return False
        window = self.valid_window if window_steps is None else window_steps
        try:
            return pyotp.TOTP(secret).verify(candidate, for_time=for_time, valid_window=window)
        except (ValueError, TypeError):
            # binascii.Error (bad base32) is a ValueError subclass
            self._log.warning("Stored TOTP secret could not be decoded")
            return False

    def now(self, secret: str) -> str:
        """Current code for secret. Used by the operator CLI and tests."""
        return pyotp.TOTP(secret).now()
