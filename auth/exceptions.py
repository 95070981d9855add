"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication errors."""


class InvalidTokenError(AuthError):
    """Session token is unknown, malformed, or already revoked."""


class SessionExpiredError(AuthError):
    """Session has expired and user must re-authenticate."""


class UserNotFoundError(AuthError):
    """Session points at a user that no longer exists."""


class UserInactiveError(AuthError):
    """User account is deactivated. Access not permitted."""
