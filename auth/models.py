"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and authorities do the work.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    user = "user"
    moderator = "moderator"
    admin = "admin"


class OtpPurpose(str, Enum):
    """Channel a one-time code was issued for.

    A code issued for one purpose never validates for another.
    """

    login = "login"
    password_reset = "password-reset"
    two_factor = "2fa"


@dataclass
class Account:
    """A directory account.

    password_hash is None unless the store was asked for secrets explicitly
    (get_by_email(..., include_secrets=True)). Everything that leaves the
    service goes through AccountView, which has no hash field at all.
    """

    email: str
    full_name: str
    role: str = Role.user.value
    id: int | None = None
    password_hash: str | None = None
    is_active: bool = True
    must_change_password: bool = False
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class AccountView:
    """Public projection of an Account -- safe to serialize."""

    id: int
    email: str
    full_name: str
    role: str
    is_active: bool
    must_change_password: bool
    last_login: datetime | None
    created_at: datetime | None

    @classmethod
    def from_account(cls, account: Account) -> "AccountView":
        return cls(
            id=account.id,
            email=account.email,
            full_name=account.full_name,
            role=account.role,
            is_active=account.is_active,
            must_change_password=account.must_change_password,
            last_login=account.last_login,
            created_at=account.created_at,
        )


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, produced once from a verified access token.

    Passed explicitly into every orchestrator operation that acts on behalf
    of a logged-in account.
    """

    account_id: int
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin.value


@dataclass
class OneTimeCode:
    account_id: int
    code_hash: str
    purpose: str
    expires_at: datetime
    attempts_remaining: int
    used: bool = False
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class TwoFactorSession:
    """A pending "password verified, OTP outstanding" handshake.

    token_digest is the keyed digest of the session token. The plaintext token
    exists only in the response to the caller.
    """

    account_id: int
    token_digest: str
    expires_at: datetime
    used: bool = False
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class PasswordResetToken:
    account_id: int
    token_hash: str
    expires_at: datetime
    used: bool = False
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass(frozen=True)
class LoginChallenge:
    """Result of the first login step: the OTP is on its way."""

    session_token: str
    expires_at: datetime
    requires_otp: bool = True


@dataclass(frozen=True)
class LoginResult:
    account: AccountView
    tokens: TokenPair
    must_change_password: bool


@dataclass(frozen=True)
class CreatedAccount:
    """Result of admin-create. temporary_password_sent is True when Gatehouse
    generated the password and emailed it."""

    account: AccountView
    temporary_password_sent: bool
