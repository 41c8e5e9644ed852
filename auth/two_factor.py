"""
auth/two_factor.py -- Ephemeral handshake between "password verified" and
"code verified".

After the password check succeeds, the caller receives a session token and
presents it back with the OTP. The token proves the password step happened
without sending the password twice.

The token is 32 random bytes (256 bits). Only its keyed digest is stored, so
a copy of the table cannot be replayed. Lookup is by digest equality.

The session and the OTP are correlated only by account id, checked by the
orchestrator at verification time. Nothing in the session row names the code
it gates.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from auth.errors import SessionInvalidOrExpired
from auth.hashing import SecretHasher
from auth.models import TwoFactorSession
from auth.secret_store import SecretStore
from core.clock import Clock, utcnow

logger = logging.getLogger("gatehouse.auth.two_factor")

DEFAULT_TTL_SECONDS = 10 * 60


class TwoFactorSessionManager:
    def __init__(
        self,
        store: SecretStore,
        hasher: SecretHasher,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def create(self, account_id: int) -> tuple[str, TwoFactorSession]:
        """Replace every session for the account; return (plaintext token, record)."""
        token = secrets.token_hex(32)
        now = self._clock()
        session = self._store.replace_session(
            TwoFactorSession(
                account_id=account_id,
                token_digest=self._hasher.digest(token),
                expires_at=now + self.ttl,
                created_at=now,
            )
        )
        return token, session

    def validate(self, session_token: str) -> TwoFactorSession:
        """Return the live session for `session_token` or raise SessionInvalidOrExpired."""
        session = self._store.get_active_session(self._hasher.digest(session_token), self._clock())
        if session is None:
            raise SessionInvalidOrExpired()
        return session

    def mark_used(self, session: TwoFactorSession) -> None:
        if not self._store.consume_session(session.id):
            # Another request finished the same handshake first.
            raise SessionInvalidOrExpired()
        session.used = True

    def invalidate(self, account_id: int) -> int:
        return self._store.invalidate_sessions(account_id)
