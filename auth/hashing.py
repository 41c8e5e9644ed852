"""
auth/hashing.py -- One-way hashing for every secret Gatehouse persists.

Two flavours, chosen by the entropy of the secret:

  hash() / compare(): bcrypt with a configurable cost. Used for low-entropy
       secrets -- passwords and 6-digit codes -- and for reset tokens. bcrypt
       salts every hash, so a stored value cannot be looked up by equality;
       callers fetch candidate rows and compare.

  digest(): HMAC-SHA256(pepper, secret). Used for 256-bit random bearer
       secrets (2FA session tokens, refresh tokens). Brute force is infeasible
       at that entropy, so bcrypt's slowness buys nothing; a deterministic
       digest lets the store do an O(1) indexed lookup. Keyed with the
       server-side pepper, a stolen table cannot be replayed without it.

The bcrypt cost is a constructor argument. There is no module-level mutable
cost setting; build one SecretHasher from Settings and inject it.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.
"""

from __future__ import annotations

import hashlib
import hmac

import bcrypt

BCRYPT_MAX_BYTES = 72


class SecretHasher:
    """bcrypt + HMAC hashing with injected cost and pepper.

    Usage:
        hasher = SecretHasher(rounds=settings.bcrypt_rounds, pepper=settings.digest_pepper)
        stored = hasher.hash("hunter2")
        hasher.compare("hunter2", stored)   # True
    """

    def __init__(self, rounds: int = 12, pepper: str = "") -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds
        self._pepper = pepper.encode("utf-8")
        # Timing equalization dummy hash [C1]. Computed once per hasher so the
        # first unknown-email login is not measurably slower than later ones.
        self._dummy_hash = self.hash("gatehouse_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash of plaintext.

        bcrypt ignores everything past 72 bytes, so longer input is refused
        rather than silently truncated. Password policy rejects such
        passwords before they get here.
        """
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            raise ValueError(f"secret exceeds {BCRYPT_MAX_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(encoded, salt).decode("utf-8")

    def compare(self, plaintext: str, hashed: str | None) -> bool:
        """Return True if plaintext matches the bcrypt hash.

        A missing or malformed hash compares False; it never raises. Input
        longer than 72 bytes can never have been hashed, so it compares False
        after spending the same bcrypt round.
        """
        if not hashed:
            return False
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            self.burn(plaintext)
            return False
        try:
            return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, plaintext: str) -> None:
        """Spend one bcrypt comparison against the dummy hash.

        Called when there is nothing real to compare against (unknown email)
        so response time does not reveal which branch ran [C1].
        """
        bcrypt.checkpw(plaintext.encode("utf-8")[:BCRYPT_MAX_BYTES], self._dummy_hash.encode("utf-8"))

    def digest(self, secret: str) -> str:
        """Return HMAC-SHA256(pepper, secret) as hex -- deterministic, indexable."""
        return hmac.new(self._pepper, secret.encode("utf-8"), hashlib.sha256).hexdigest()
