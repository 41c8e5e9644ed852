"""
auth/lifecycle.py -- CredentialLifecycleOrchestrator.

Composes the verifier, the three secret authorities, the refresh-token set and
the token issuer into the protocols the HTTP layer exposes. This is the only
place that knows the order of steps; every authority below it is ignorant of
the others.

Password + OTP login is a two-step state machine:

    NONE --login_with_otp()--> CREDENTIALS_VALIDATED --verify_otp_complete_login()--> OTP_VERIFIED
      \\                              \\
       `-- any failure --> FAILED      `-- any failure --> FAILED (session stays live for a retry
                                                           until it expires or the code is exhausted)

The 2FA session and the OTP are correlated only through the account id: the
session is checked against the account resolved from the submitted email, and
the OTP is looked up for that same account.

Email policy: the sign-in code, the reset link and the temporary password are
the whole point of their operations, so a failed send propagates
(NotificationError). "Password changed" confirmations are best effort: a
failed send is logged and the operation still succeeds.

Anti-enumeration: request_otp() and forgot_password() return the same message
object for known and unknown emails, and spend one bcrypt comparison on the
unknown branch so timing stays comparable. verify_otp_complete_login() does
the same when the email names no account.

Threading: the stores, bcrypt and smtplib all block. Every public operation
is a coroutine whose body runs in a worker thread (asyncio.to_thread), so a
slow SMTP server or a cost-12 bcrypt round never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING

from auth.errors import (
    AccountInactive,
    AccountNotFound,
    CurrentPasswordIncorrect,
    InvalidCredentials,
    NewPasswordEqualsCurrent,
    NotificationError,
    OtpNotFound,
    PasswordConfirmationMismatch,
    RefreshTokenInvalidOrUnknown,
    SessionAccountMismatch,
)
from auth.hashing import SecretHasher
from auth.models import (
    Account,
    AccountView,
    CreatedAccount,
    LoginChallenge,
    LoginResult,
    OtpPurpose,
    Principal,
    Role,
    TokenPair,
)
from auth.otp import OtpAuthority
from auth.password_reset import PasswordResetAuthority
from auth.passwords import generate_temporary_password
from auth.refresh import RefreshTokenStore
from auth.secret_store import SecretStore
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from auth.two_factor import TwoFactorSessionManager
from auth.verifier import CredentialVerifier
from core.clock import Clock, utcnow
from core.config import Settings

if TYPE_CHECKING:
    from notify.mailer import Notifier

logger = logging.getLogger("gatehouse.auth.lifecycle")

OTP_SENT_MESSAGE = "If an active account exists for that email, a sign-in code has been sent."
RESET_SENT_MESSAGE = "If an account exists for that email, a password reset link has been sent."
PASSWORD_CHANGED_MESSAGE = "Password changed. Please sign in again."
PASSWORD_RESET_MESSAGE = "Password has been reset. Please sign in with your new password."
LOGGED_OUT_MESSAGE = "Logged out."
LOGGED_OUT_ALL_MESSAGE = "Logged out from all devices."


def _in_thread(method):
    """Turn a blocking method into a coroutine that runs it in a worker thread."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        return await asyncio.to_thread(method, self, *args, **kwargs)

    return wrapper


class CredentialLifecycleOrchestrator:
    """Login, logout, password change/reset, refresh and account creation.

    Every public operation is a coroutine. The stores underneath are
    synchronous SQLAlchemy calls run off the event loop; there is no
    in-process locking, exclusivity lives in the database (see
    auth/secret_store.py).
    """

    def __init__(
        self,
        *,
        accounts: AccountStore,
        hasher: SecretHasher,
        verifier: CredentialVerifier,
        otp: OtpAuthority,
        two_factor: TwoFactorSessionManager,
        resets: PasswordResetAuthority,
        refresh_tokens: RefreshTokenStore,
        issuer: TokenIssuer,
        notifier: Notifier,
    ) -> None:
        self.accounts = accounts
        self.hasher = hasher
        self.verifier = verifier
        self.otp = otp
        self.two_factor = two_factor
        self.resets = resets
        self.refresh_tokens = refresh_tokens
        self.issuer = issuer
        self.notifier = notifier

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        accounts: AccountStore,
        secrets: SecretStore,
        notifier: Notifier,
        clock: Clock = utcnow,
    ) -> "CredentialLifecycleOrchestrator":
        """Build the orchestrator and every authority beneath it from Settings.

        The API lifespan, the CLI and the tests all wire through here so the
        TTLs, bcrypt cost and signing keys come from one place.
        """
        hasher = SecretHasher(rounds=settings.bcrypt_rounds, pepper=settings.digest_pepper)
        return cls(
            accounts=accounts,
            hasher=hasher,
            verifier=CredentialVerifier(accounts, hasher),
            otp=OtpAuthority(
                secrets,
                hasher,
                ttl_seconds=settings.otp_ttl_seconds,
                max_attempts=settings.otp_max_attempts,
                clock=clock,
            ),
            two_factor=TwoFactorSessionManager(secrets, hasher, ttl_seconds=settings.two_factor_ttl_seconds, clock=clock),
            resets=PasswordResetAuthority(secrets, hasher, ttl_seconds=settings.reset_token_ttl_seconds, clock=clock),
            refresh_tokens=RefreshTokenStore(accounts, hasher),
            issuer=TokenIssuer(settings, clock=clock),
            notifier=notifier,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_tokens(self, account: Account) -> TokenPair:
        pair = self.issuer.issue_pair(account.id, account.email, account.role)
        self.refresh_tokens.add(account.id, pair.refresh_token, self.issuer.refresh_expiry())
        return pair

    def _load(self, account_id: int, include_secrets: bool = False) -> Account:
        account = self.accounts.get_by_id(account_id, include_secrets=include_secrets)
        if account is None:
            raise AccountNotFound()
        return account

    def _confirm_password_changed(self, account: Account) -> None:
        try:
            self.notifier.send_password_changed(account.email, account.full_name)
        except NotificationError:
            logger.warning("Password-changed confirmation not delivered for account id=%s", account.id)

    # ------------------------------------------------------------------
    # Registration and admin-create
    # ------------------------------------------------------------------

    @_in_thread
    def register(self, email: str, password: str, full_name: str) -> LoginResult:
        """Self-service sign-up. Returns the new account already signed in."""
        account_id = self.accounts.create_account(
            Account(email=email, full_name=full_name, role=Role.user.value),
            self.hasher.hash(password),
        )
        account = self._load(account_id)
        logger.info("Registered account id=%s", account_id)
        return LoginResult(
            account=AccountView.from_account(account),
            tokens=self._issue_tokens(account),
            must_change_password=False,
        )

    @_in_thread
    def admin_create_account(
        self,
        admin: Principal,
        *,
        email: str,
        full_name: str,
        role: str = Role.user.value,
        password: str | None = None,
    ) -> CreatedAccount:
        """Create an account on someone's behalf.

        Without a password, a temporary one is generated, emailed to the new
        user, and must_change_password is set so the first session is steered
        to change-password.
        """
        temporary = password is None
        plaintext = generate_temporary_password() if temporary else password
        account_id = self.accounts.create_account(
            Account(email=email, full_name=full_name, role=Role(role).value, must_change_password=temporary),
            self.hasher.hash(plaintext),
        )
        account = self._load(account_id)
        logger.info("Account id=%s created by admin id=%s (temporary=%s)", account_id, admin.account_id, temporary)
        if temporary:
            issuer = self.accounts.get_by_id(admin.account_id)
            issued_by = issuer.full_name if issuer is not None else "An administrator"
            self.notifier.send_temporary_password(account.email, account.full_name, plaintext, issued_by)
        return CreatedAccount(account=AccountView.from_account(account), temporary_password_sent=temporary)

    # ------------------------------------------------------------------
    # Password + OTP login
    # ------------------------------------------------------------------

    @_in_thread
    def login_with_otp(self, email: str, password: str) -> LoginChallenge:
        """Step 1: verify the password, open a 2FA session, email a code."""
        account = self.verifier.verify(email, password)
        session_token, session = self.two_factor.create(account.id)
        code = self.otp.issue(account.id, OtpPurpose.two_factor)
        self.notifier.send_otp(account.email, code, account.full_name)
        return LoginChallenge(session_token=session_token, expires_at=session.expires_at)

    @_in_thread
    def verify_otp_complete_login(self, email: str, otp: str, session_token: str | None = None) -> LoginResult:
        """Step 2: check the code and hand out tokens.

        With a session token the code must be a 2FA code and the session must
        belong to the account named by `email`. Without one, this is the
        passwordless path and the code must be a login code from request_otp().
        """
        account = self.accounts.get_by_email(email)
        if session_token:
            session = self.two_factor.validate(session_token)
            if account is None or session.account_id != account.id:
                logger.warning("2FA session presented for a different account (session account id=%s)", session.account_id)
                self.hasher.burn(otp)
                raise SessionAccountMismatch()
            self.otp.validate(account.id, otp, OtpPurpose.two_factor)
            self.two_factor.mark_used(session)
        else:
            if account is None:
                self.hasher.burn(otp)
                raise OtpNotFound()
            self.otp.validate(account.id, otp, OtpPurpose.login)

        if not account.is_active:
            raise AccountInactive()

        self.accounts.update_last_login(account.id)
        account = self._load(account.id)
        return LoginResult(
            account=AccountView.from_account(account),
            tokens=self._issue_tokens(account),
            must_change_password=account.must_change_password,
        )

    @_in_thread
    def request_otp(self, email: str) -> str:
        """Email a passwordless sign-in code if the account exists and is active."""
        account = self.accounts.get_by_email(email)
        if account is None or not account.is_active:
            self.hasher.burn(email)
            return OTP_SENT_MESSAGE
        code = self.otp.issue(account.id, OtpPurpose.login)
        self.notifier.send_otp(account.email, code, account.full_name)
        return OTP_SENT_MESSAGE

    # ------------------------------------------------------------------
    # Refresh and logout
    # ------------------------------------------------------------------

    @_in_thread
    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate: spend the presented refresh token and issue a new pair."""
        claims = self.issuer.verify_refresh(refresh_token)
        account_id = claims["sub"]
        account = self.accounts.get_by_id(account_id)
        if account is None or not account.is_active:
            raise RefreshTokenInvalidOrUnknown()
        # remove() doubles as the membership check: only the request that
        # deletes the row may proceed, so a token is good for one refresh.
        if not self.refresh_tokens.remove(account_id, refresh_token):
            logger.warning("Unknown or already-rotated refresh token for account id=%s", account_id)
            raise RefreshTokenInvalidOrUnknown()
        return self._issue_tokens(account)

    @_in_thread
    def logout(self, principal: Principal, refresh_token: str) -> str:
        self.refresh_tokens.remove(principal.account_id, refresh_token)
        return LOGGED_OUT_MESSAGE

    @_in_thread
    def logout_all(self, principal: Principal) -> str:
        removed = self.refresh_tokens.clear_all(principal.account_id)
        logger.info("Cleared %d refresh token(s) for account id=%s", removed, principal.account_id)
        return LOGGED_OUT_ALL_MESSAGE

    # ------------------------------------------------------------------
    # Password change and reset
    # ------------------------------------------------------------------

    @_in_thread
    def change_password(
        self,
        principal: Principal,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> str:
        """Change the caller's password and sign every device out."""
        account = self.accounts.get_by_id(principal.account_id, include_secrets=True)
        if account is None or not account.is_active:
            raise InvalidCredentials()
        if not self.hasher.compare(current_password, account.password_hash):
            raise CurrentPasswordIncorrect()
        if new_password == current_password:
            raise NewPasswordEqualsCurrent()
        if new_password != confirm_password:
            raise PasswordConfirmationMismatch()

        self.accounts.set_password(account.id, self.hasher.hash(new_password), must_change_password=False)
        self.refresh_tokens.clear_all(account.id)
        logger.info("Password changed for account id=%s", account.id)
        self._confirm_password_changed(account)
        return PASSWORD_CHANGED_MESSAGE

    @_in_thread
    def forgot_password(self, email: str) -> str:
        """Email a reset link if the account exists. Same answer either way."""
        account = self.accounts.get_by_email(email)
        if account is None:
            self.hasher.burn(email)
            return RESET_SENT_MESSAGE
        token = self.resets.create(account.id)
        self.notifier.send_password_reset(account.email, token, account.full_name)
        return RESET_SENT_MESSAGE

    @_in_thread
    def reset_password(self, token: str, new_password: str) -> str:
        record = self.resets.validate(token)
        self.resets.mark_used(record)
        account = self._load(record.account_id)
        self.accounts.set_password(account.id, self.hasher.hash(new_password), must_change_password=False)
        self.refresh_tokens.clear_all(account.id)
        logger.info("Password reset for account id=%s", account.id)
        self._confirm_password_changed(account)
        return PASSWORD_RESET_MESSAGE

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    @_in_thread
    def profile(self, principal: Principal) -> AccountView:
        return AccountView.from_account(self._load(principal.account_id))
