"""
auth/errors.py -- Typed failures raised by the credential lifecycle.

Every error carries two faces:
  code / message           -- the internal distinction, for server-side logs.
  public_code / public_message -- what the HTTP layer is allowed to show.

Authentication failures deliberately share one public face per family
("bad_credentials", "invalid_otp") so a caller cannot use the response to
probe whether an account exists, whether a code was close, or how many
attempts are left [C1]. api/main.py renders only the public face.

Layer rule: no imports from api/, notify/, or fastapi.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all credential lifecycle failures."""

    status_code: int = 401
    code: str = "auth_error"
    public_code: str = "unauthorized"
    public_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    public_code = "bad_credentials"
    public_message = "Invalid email or password."


class AccountInactive(InvalidCredentials):
    """Raised for a correct password on a disabled account.

    Subclasses InvalidCredentials so every caller that handles the generic
    case handles this one too, with the same public face.
    """

    code = "account_inactive"


class TokenInvalidOrExpired(AuthError):
    code = "token_invalid_or_expired"
    public_code = "unauthorized"
    public_message = "Authentication required."


# ---------------------------------------------------------------------------
# One-time codes and 2FA sessions
# ---------------------------------------------------------------------------


class OtpError(AuthError):
    code = "otp_error"
    public_code = "invalid_otp"
    public_message = "Invalid or expired code."


class OtpNotFound(OtpError):
    code = "otp_not_found"


class OtpExhausted(OtpError):
    code = "otp_exhausted"


class OtpMismatch(OtpError):
    code = "otp_mismatch"

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(f"Code mismatch, {attempts_remaining} attempt(s) remaining.")
        self.attempts_remaining = attempts_remaining


class SessionInvalidOrExpired(OtpError):
    code = "session_invalid_or_expired"


class SessionAccountMismatch(OtpError):
    code = "session_account_mismatch"


# ---------------------------------------------------------------------------
# Password reset and refresh
# ---------------------------------------------------------------------------


class ResetTokenInvalidOrExpired(AuthError):
    status_code = 400
    code = "reset_token_invalid_or_expired"
    public_code = "invalid_reset_token"
    public_message = "Invalid or expired reset token."


class RefreshTokenInvalidOrUnknown(AuthError):
    code = "refresh_token_invalid_or_unknown"
    public_code = "invalid_refresh_token"
    public_message = "Invalid refresh token."


# ---------------------------------------------------------------------------
# Password change and account creation
# ---------------------------------------------------------------------------


class PasswordConfirmationMismatch(AuthError):
    status_code = 400
    code = "password_confirmation_mismatch"
    public_code = "password_confirmation_mismatch"
    public_message = "New password and confirmation do not match."


class NewPasswordEqualsCurrent(AuthError):
    status_code = 400
    code = "new_password_equals_current"
    public_code = "password_unchanged"
    public_message = "New password must be different from the current password."


class CurrentPasswordIncorrect(InvalidCredentials):
    """Wrong current password during change-password.

    The caller is already authenticated, so this is a 400 with a specific
    message rather than the generic 401.
    """

    status_code = 400
    code = "current_password_incorrect"
    public_code = "current_password_incorrect"
    public_message = "Current password is incorrect."


class EmailAlreadyExists(AuthError):
    status_code = 409
    code = "email_already_exists"
    public_code = "conflict"
    public_message = "An account with that email already exists."


class AccountNotFound(AuthError):
    status_code = 404
    code = "account_not_found"
    public_code = "not_found"
    public_message = "Account not found."


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class NotificationError(AuthError):
    """The email transport refused or failed to deliver a message."""

    status_code = 503
    code = "notification_failed"
    public_code = "delivery_unavailable"
    public_message = "Email delivery is temporarily unavailable. Please try again later."
