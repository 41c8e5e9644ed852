"""
auth/password_reset.py -- Password-reset token authority.

Reset tokens are 256-bit random hex strings delivered by email as part of a
link. They are stored only as bcrypt hashes, which are salted, so a presented
token cannot be found by equality. validate() therefore fetches every
unexpired, unused token and compares against each one. The scan stays small:
there is at most one live token per account and each lives 30 minutes.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from auth.errors import ResetTokenInvalidOrExpired
from auth.hashing import SecretHasher
from auth.models import PasswordResetToken
from auth.secret_store import SecretStore
from core.clock import Clock, utcnow

logger = logging.getLogger("gatehouse.auth.password_reset")

DEFAULT_TTL_SECONDS = 30 * 60


class PasswordResetAuthority:
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

    def create(self, account_id: int) -> str:
        """Replace any reset token for the account and return a new plaintext token."""
        token = secrets.token_hex(32)
        now = self._clock()
        self._store.replace_reset_token(
            PasswordResetToken(
                account_id=account_id,
                token_hash=self._hasher.hash(token),
                expires_at=now + self.ttl,
                created_at=now,
            )
        )
        logger.info("Issued password reset token for account id=%s", account_id)
        return token

    def validate(self, token: str) -> PasswordResetToken:
        """Return the live record matching `token` or raise ResetTokenInvalidOrExpired."""
        for record in self._store.list_active_reset_tokens(self._clock()):
            if self._hasher.compare(token, record.token_hash):
                return record
        raise ResetTokenInvalidOrExpired()

    def mark_used(self, record: PasswordResetToken) -> None:
        if not self._store.consume_reset_token(record.id):
            raise ResetTokenInvalidOrExpired()
        record.used = True
