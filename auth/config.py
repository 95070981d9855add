"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Session handling for requests to the billing API.

    Sessions are issued by the login service; this service only validates,
    extends and revokes them.
    """

    session_cookie_name: str = Field(
        default="session_token",
        description="Cookie carrying the opaque session token",
        min_length=1,
    )
    session_expiry_hours: int = Field(
        default=24 * 7,
        description="Session lifetime in hours",
        ge=1,
        le=2160,
    )
    session_extend_on_activity: bool = Field(
        default=True,
        description="Slide the expiry forward on each authenticated request",
    )
