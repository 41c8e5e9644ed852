"""
auth/tokens.py -- Signing and verification of access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different keys (SECRET_KEY, REFRESH_SECRET_KEY) and expire on their own
       clocks. A token of one kind never verifies as the other: the keys
       differ and the "type" claim is checked as well.

  Claims: sub (account id as string), email, role, type, iat, exp, and a
       random jti. The jti guarantees two pairs issued in the same second are
       different strings, which refresh rotation depends on.

  Verification raises rather than returning None: the orchestrator needs to
       tell an invalid refresh token apart from an unknown one only in logs,
       and the typed error carries that distinction.

Signature validity is never sufficient for a refresh token. The orchestrator
also requires membership in the account's refresh-token set (auth/refresh.py).

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from jose import JWTError, jwt

from auth.errors import RefreshTokenInvalidOrUnknown, TokenInvalidOrExpired
from auth.models import Principal, TokenPair
from core.clock import Clock, utcnow
from core.config import Settings

logger = logging.getLogger("gatehouse.auth.tokens")

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"


class TokenIssuer:
    """Issues and verifies the access/refresh JWT pair.

    Usage:
        issuer = TokenIssuer(settings)
        pair = issuer.issue_pair(42, "a@example.com", "user")
        principal = issuer.verify_access(pair.access_token)
    """

    def __init__(self, settings: Settings, clock: Clock = utcnow) -> None:
        self._access_key = settings.secret_key
        self._refresh_key = settings.refresh_secret_key
        self.access_ttl = settings.access_token_expire_seconds
        self.refresh_ttl = settings.refresh_token_expire_seconds
        self._clock = clock

    def _encode(self, account_id: int, email: str, role: str, kind: str, key: str, ttl: int) -> str:
        now = self._clock()
        payload = {
            "sub": str(account_id),
            "email": email,
            "role": role,
            "type": kind,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, key, algorithm=_ALGORITHM)

    def issue_pair(self, account_id: int, email: str, role: str) -> TokenPair:
        """Sign a fresh access token and refresh token for the account."""
        return TokenPair(
            access_token=self._encode(account_id, email, role, _ACCESS, self._access_key, self.access_ttl),
            refresh_token=self._encode(account_id, email, role, _REFRESH, self._refresh_key, self.refresh_ttl),
            expires_in=self.access_ttl,
        )

    def refresh_expiry(self) -> datetime:
        """Expiry to record alongside a refresh token issued now."""
        return self._clock() + timedelta(seconds=self.refresh_ttl)

    def _decode(self, token: str, key: str, kind: str) -> dict:
        # exp is checked here against our clock rather than by jose, so tests
        # that move the clock see consistent expiry.
        payload = jwt.decode(token, key, algorithms=[_ALGORITHM], options={"verify_exp": False})
        if payload.get("type") != kind or "sub" not in payload or "role" not in payload:
            raise JWTError("missing or mismatched claims")
        if int(payload.get("exp", 0)) <= int(self._clock().timestamp()):
            raise JWTError("token expired")
        return payload

    def verify_access(self, token: str) -> Principal:
        """Verify an access token and return the typed Principal."""
        try:
            payload = self._decode(token, self._access_key, _ACCESS)
            return Principal(account_id=int(payload["sub"]), email=payload["email"], role=payload["role"])
        except (JWTError, KeyError, ValueError) as exc:
            raise TokenInvalidOrExpired() from exc

    def verify_refresh(self, token: str) -> dict:
        """Verify a refresh token's signature and expiry; return its claims."""
        try:
            payload = self._decode(token, self._refresh_key, _REFRESH)
            payload["sub"] = int(payload["sub"])
            return payload
        except (JWTError, KeyError, ValueError) as exc:
            logger.info("Refresh token rejected: %s", exc)
            raise RefreshTokenInvalidOrUnknown() from exc
