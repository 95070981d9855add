"""Session token validation and revocation.

Sessions live in Valkey under "session:<token>" with a TTL matching their
expiry. The login service writes them; requests to this service read them.
"""

from datetime import timedelta
from uuid import UUID

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import Session
from auth.exceptions import InvalidTokenError, SessionExpiredError
from utils.timezone import now_utc, parse_iso


class SessionManager:
    """Looks up sessions in Valkey and keeps active ones alive."""

    KEY_PREFIX = "session:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    def _store(self, session: Session) -> None:
        self._valkey.set_json(
            self._key(session.token),
            {
                "user_id": str(session.user_id),
                "created_at": session.created_at.isoformat(),
                "expires_at": session.expires_at.isoformat(),
                "last_activity_at": session.last_activity_at.isoformat(),
            },
            expire_seconds=self._config.session_expiry_hours * 3600,
        )

    def validate_session(self, token: str) -> Session:
        """Validate session token and return session.

        Raises:
            SessionExpiredError: Token unknown to Valkey or past expiry
            InvalidTokenError: Stored session data is unreadable
        """
        data = self._valkey.get_json(self._key(token))

        if data is None:
            raise SessionExpiredError("Session not found or expired")

        try:
            session = Session(
                token=token,
                user_id=UUID(data["user_id"]),
                created_at=parse_iso(data["created_at"]),
                expires_at=parse_iso(data["expires_at"]),
                last_activity_at=parse_iso(data["last_activity_at"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTokenError("Malformed session") from e

        # Valkey TTL normally evicts first
        if now_utc() > session.expires_at:
            self._valkey.delete(self._key(token))
            raise SessionExpiredError("Session expired")

        if self._config.session_extend_on_activity:
            session = self._extend_session(session)

        return session

    def _extend_session(self, session: Session) -> Session:
        """Slide expiry forward and record activity."""
        now = now_utc()
        updated = session.model_copy(update={
            "expires_at": now + timedelta(hours=self._config.session_expiry_hours),
            "last_activity_at": now,
        })
        self._store(updated)
        return updated

    def revoke_session(self, token: str) -> None:
        """Revoke session (logout). Safe to call with nonexistent token."""
        self._valkey.delete(self._key(token))
