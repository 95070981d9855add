"""Request-scoped middleware for API requests."""

from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an ID.

    An upstream X-Request-ID (from the dashboard's proxy) is reused so a
    payment check can be traced end to end; otherwise one is generated. The
    ID is echoed in the response header and in the envelope's meta.
    """

    HEADER = "X-Request-ID"
    MAX_LENGTH = 128

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get(self.HEADER, "").strip()
        request_id = incoming if 0 < len(incoming) <= self.MAX_LENGTH else str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[self.HEADER] = request_id
        return response
