"""
auth/errors.py -- Failure taxonomy for the account and session subsystem.

Every exception carries a stable ``code`` (for programmatic handling) and a
user-facing ``message`` (for the transient notification the caller shows).
Provider adapters translate their library errors into these classes; raw
requests/sqlalchemy exceptions never reach callers of the facade.

TokenInvalid / TokenExpired are raised only inside auth/tokens.py and are
always converted to a boolean before leaving the token validator.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every failure the facade surfaces."""

    code = "auth_error"
    default_message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class WeakPassword(AuthError):
    """Password fails the strength policy. Raised before any provider call."""

    code = "weak_password"
    default_message = "Password does not meet the strength requirements."

    def __init__(self, problems: list[str] | None = None) -> None:
        self.problems = problems or []
        message = self.default_message
        if self.problems:
            message = f"{message} It must contain {', '.join(self.problems)}."
        super().__init__(message)


class DuplicateAccount(AuthError):
    code = "duplicate_account"
    default_message = "User with this email or username already exists."


class InvalidCredentials(AuthError):
    """Login failed. Never says whether the email or the password was wrong."""

    code = "invalid_credentials"
    default_message = "Invalid email or password."


class ProfileMissing(AuthError):
    """Signed in with the provider, but no profile row exists for the account."""

    code = "profile_missing"
    default_message = "Your profile could not be found. Please sign in again."


class ProviderUnavailable(AuthError):
    code = "provider_unavailable"
    default_message = "The authentication service is unavailable. Please try again."


class NotAuthenticated(AuthError):
    """An account operation was attempted with nobody signed in."""

    code = "not_authenticated"
    default_message = "Please login to continue."


class TokenInvalid(AuthError):
    code = "token_invalid"
    default_message = "Session token is malformed."


class TokenExpired(TokenInvalid):
    code = "token_expired"
    default_message = "Session has expired."
