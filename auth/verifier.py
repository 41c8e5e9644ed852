"""
auth/verifier.py -- Email + password credential check (constant-time) [C1].

Always runs bcrypt whether or not the account exists. This prevents an
attacker from enumerating valid emails by measuring response time:
  - Unknown email: bcrypt runs against the hasher's dummy hash.
  - Wrong password: bcrypt runs against the real hash.
Both cost the same.

No side effects: the verifier never touches last_login or any counter.
"""

from __future__ import annotations

import logging

from auth.errors import AccountInactive, InvalidCredentials
from auth.hashing import SecretHasher
from auth.models import Account
from auth.store import AccountStore

logger = logging.getLogger("gatehouse.auth.verifier")


class CredentialVerifier:
    def __init__(self, accounts: AccountStore, hasher: SecretHasher) -> None:
        self._accounts = accounts
        self._hasher = hasher

    def verify(self, email: str, password: str) -> Account:
        """Return the Account (with its password hash) or raise InvalidCredentials.

        AccountInactive is a subclass of InvalidCredentials and is only raised
        after the password matched, so it reveals nothing to someone who does
        not already know the password.
        """
        account = self._accounts.get_by_email(email, include_secrets=True)
        if account is None or account.password_hash is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self._hasher.burn(password)
            raise InvalidCredentials()
        if not self._hasher.compare(password, account.password_hash):
            raise InvalidCredentials()
        if not account.is_active:
            logger.info("Login refused for inactive account id=%s", account.id)
            raise AccountInactive()
        return account
