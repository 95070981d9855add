"""Authentication and caller resolution."""

from auth.exceptions import (
    AuthError,
    InvalidTokenError,
    SessionExpiredError,
    UserNotFoundError,
    UserInactiveError,
)
from auth.types import User, UserRole, Caller, Session
from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.session import SessionManager
from auth.security_middleware import AuthMiddleware
from auth.api import create_auth_router
