"""
auth/refresh.py -- The per-account set of currently valid refresh tokens.

A signed, unexpired refresh token is honoured only while it is a member of
its account's set. That is what makes revocation possible without a
blacklist: remove() spends one token (rotation, logout), clear_all() spends
every token (password change or reset, logout everywhere).

Several members per account are normal -- one per device that logged in.
Members are stored as keyed digests.
"""

from __future__ import annotations

from datetime import datetime

from auth.hashing import SecretHasher
from auth.store import AccountStore


class RefreshTokenStore:
    def __init__(self, accounts: AccountStore, hasher: SecretHasher) -> None:
        self._accounts = accounts
        self._hasher = hasher

    def add(self, account_id: int, token: str, expires_at: datetime) -> None:
        self._accounts.insert_refresh_token(account_id, self._hasher.digest(token), expires_at)

    def contains(self, account_id: int, token: str) -> bool:
        return self._accounts.has_refresh_token(account_id, self._hasher.digest(token))

    def remove(self, account_id: int, token: str) -> bool:
        """Remove one token. True only if this call removed it."""
        return self._accounts.delete_refresh_token(account_id, self._hasher.digest(token))

    def clear_all(self, account_id: int) -> int:
        return self._accounts.delete_all_refresh_tokens(account_id)

    def count(self, account_id: int) -> int:
        return self._accounts.count_refresh_tokens(account_id)
