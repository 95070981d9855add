"""HTTP routes for authentication."""

from fastapi import APIRouter, Request, Response

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.session import SessionManager
from api.base import success_response
from api.dependencies import get_caller
from core.exceptions import NotFoundError


def create_auth_router(
    session_manager: SessionManager,
    auth_db: AuthDatabase,
    config: AuthConfig | None = None,
) -> APIRouter:
    """Create auth router with injected session manager."""
    router = APIRouter(tags=["auth"])
    cookie_name = (config or AuthConfig()).session_cookie_name

    @router.post("/logout")
    def logout(request: Request, response: Response):
        """Logout - revoke session and clear cookie."""
        session_token = request.cookies.get(cookie_name)
        if session_token:
            session_manager.revoke_session(session_token)

        response.delete_cookie(key=cookie_name)

        return success_response(
            {"message": "Logged out successfully"},
            getattr(request.state, "request_id", None),
        )

    @router.get("/me")
    def get_current_user(request: Request):
        """Get current authenticated user with their role."""
        caller = get_caller(request)
        user = auth_db.get_user_by_id(caller.id)
        if user is None:
            raise NotFoundError("User not found")

        return success_response(
            {
                "id": str(user.id),
                "email": user.email,
                "full_name": user.full_name,
                "role": user.role.value,
            },
            getattr(request.state, "request_id", None),
        )

    return router
