"""Request accessors shared by routers."""

from fastapi import Request

from auth.exceptions import AuthError
from auth.types import Caller


def get_caller(request: Request) -> Caller:
    """Caller resolved by AuthMiddleware. Raises AuthError if absent."""
    caller = getattr(request.state, "caller", None)
    if caller is None:
        raise AuthError("Authentication required")
    return caller


def get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)
