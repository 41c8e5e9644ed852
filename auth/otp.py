"""
auth/otp.py -- One-time code authority.

A one-time code is six random digits, valid for a few minutes, good for a
fixed number of wrong guesses, and spent the first time it matches. Codes are
scoped to (account, purpose): a login code never validates a 2FA step.

Lifecycle of a code record:

    issued  --match-->            used (success)
       |  --mismatch, n>1-->      issued with n-1 attempts (OtpMismatch)
       |  --mismatch, n==1-->     used, 0 attempts (OtpExhausted, and again for any
       |                          later attempt until it expires or is replaced)
       |  --expires_at <= now-->  invisible to validate (OtpNotFound)
       `  --new code issued-->    used (superseded; OtpNotFound if presented)

Only bcrypt(code) is stored. The plaintext is returned from issue() for the
caller to deliver out of band and is never persisted or logged.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from auth.errors import OtpExhausted, OtpMismatch, OtpNotFound
from auth.hashing import SecretHasher
from auth.models import OneTimeCode, OtpPurpose
from auth.secret_store import SecretStore
from core.clock import Clock, utcnow

logger = logging.getLogger("gatehouse.auth.otp")

CODE_DIGITS = 6
DEFAULT_TTL_SECONDS = 4 * 60
DEFAULT_MAX_ATTEMPTS = 3


def generate_code(digits: int = CODE_DIGITS) -> str:
    """Cryptographically random numeric code, leading zeros allowed."""
    return "".join(str(secrets.randbelow(10)) for _ in range(digits))


class OtpAuthority:
    """Issues and validates one-time codes per (account, purpose).

    Usage:
        otp = OtpAuthority(secret_store, hasher)
        code = otp.issue(account_id, OtpPurpose.login)
        otp.validate(account_id, code, OtpPurpose.login)   # returns the spent record
    """

    def __init__(
        self,
        store: SecretStore,
        hasher: SecretHasher,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_attempts = max_attempts
        self._clock = clock

    def issue(self, account_id: int, purpose: OtpPurpose | str) -> str:
        """Replace any unused code for (account_id, purpose) and return a new plaintext code."""
        purpose = OtpPurpose(purpose).value
        code = generate_code()
        now = self._clock()
        self._store.replace_code(
            OneTimeCode(
                account_id=account_id,
                code_hash=self._hasher.hash(code),
                purpose=purpose,
                expires_at=now + self.ttl,
                attempts_remaining=self.max_attempts,
                created_at=now,
            )
        )
        logger.info("Issued %s code for account id=%s", purpose, account_id)
        return code

    def validate(self, account_id: int, code: str, purpose: OtpPurpose | str) -> OneTimeCode:
        """Spend `code` or raise OtpNotFound / OtpExhausted / OtpMismatch."""
        purpose = OtpPurpose(purpose).value
        record = self._store.get_active_code(account_id, purpose, self._clock())
        if record is None:
            spent = self._store.list_spent_codes(account_id, purpose, self._clock())
            if spent and spent[0].attempts_remaining <= 0:
                raise OtpExhausted()
            raise OtpNotFound()

        if not self._hasher.compare(code, record.code_hash):
            if self._is_spent(account_id, code, purpose):
                # A superseded or already-used code is gone, not a wrong guess.
                raise OtpNotFound()
            remaining = self._store.record_code_failure(record.id)
            if remaining is None:
                # Spent or exhausted by a concurrent request between our read and write.
                raise OtpNotFound()
            if remaining <= 0:
                logger.info("Code exhausted for account id=%s purpose=%s", account_id, purpose)
                raise OtpExhausted()
            raise OtpMismatch(remaining)

        if not self._store.consume_code(record.id):
            raise OtpNotFound()
        record.used = True
        return record

    def _is_spent(self, account_id: int, code: str, purpose: str) -> bool:
        return any(
            self._hasher.compare(code, spent.code_hash)
            for spent in self._store.list_spent_codes(account_id, purpose, self._clock())
        )

    def invalidate(self, account_id: int, purpose: OtpPurpose | str | None = None) -> int:
        """Mark every unused code for the account (optionally one purpose) as used."""
        value = OtpPurpose(purpose).value if purpose is not None else None
        return self._store.invalidate_codes(account_id, value)

    def stats(self) -> dict[str, int]:
        return self._store.code_stats(self._clock())
