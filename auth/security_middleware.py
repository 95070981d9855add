"""Security middleware for FastAPI - session validation and caller resolution."""

import logging

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.session import SessionManager
from auth.exceptions import AuthError, SessionExpiredError, UserInactiveError
from auth.types import Caller
from api.base import error_response, ErrorCodes

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates the session and resolves the caller.

    For protected routes:
    1. Extracts session token from the session cookie
    2. Validates session via SessionManager
    3. Loads the user to resolve their current role
    4. Sets request.state.caller (Caller{id, role}) and request.state.session

    Roles are read per request, so a demoted admin loses access immediately.
    Public paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/auth/logout",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(
        self,
        app,
        session_manager: SessionManager,
        auth_db: AuthDatabase,
        config: AuthConfig | None = None,
    ):
        super().__init__(app)
        self._session_manager = session_manager
        self._auth_db = auth_db
        self._cookie_name = (config or AuthConfig()).session_cookie_name

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path + "/"):
                return True
        return False

    def _unauthorized(self, request: Request, code: str, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content=error_response(
                code, message, getattr(request.state, "request_id", None)
            ).model_dump(mode="json"),
        )

    def _authenticate(self, request: Request, session_token: str) -> JSONResponse | None:
        """
        Resolve the caller for session_token onto request.state.

        Blocks on Valkey and Postgres. Returns a 401 response on failure,
        None on success.
        """
        try:
            session = self._session_manager.validate_session(session_token)
        except SessionExpiredError:
            return self._unauthorized(request, ErrorCodes.SESSION_EXPIRED, "Session has expired")
        except AuthError:
            return self._unauthorized(request, ErrorCodes.INVALID_TOKEN, "Invalid session")

        try:
            user = self._auth_db.get_user_by_id(session.user_id)
            if user is None:
                raise AuthError(f"Session user {session.user_id} not found")
            if not user.is_active:
                raise UserInactiveError(f"User {user.id} is inactive")
        except UserInactiveError:
            self._session_manager.revoke_session(session_token)
            return self._unauthorized(request, ErrorCodes.ACCOUNT_INACTIVE, "Account is deactivated")
        except AuthError as e:
            logger.warning(str(e))
            return self._unauthorized(request, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        request.state.caller = Caller.from_user(user)
        request.state.session = session
        return None

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if self._is_public_path(request.url.path):
            return await call_next(request)

        session_token = request.cookies.get(self._cookie_name)
        if not session_token:
            return self._unauthorized(request, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        rejection = await run_in_threadpool(self._authenticate, request, session_token)
        if rejection is not None:
            return rejection

        return await call_next(request)
