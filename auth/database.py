"""Database lookups for authentication.

The users table is owned by the account service; billing only reads it to
resolve the caller's role on each request.
"""

from uuid import UUID

from clients.postgres_client import PostgresClient
from auth.types import User


class AuthDatabase:
    """Read-only user lookups."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def get_user_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        row = self._db.execute_single(
            """SELECT id, email, full_name, role, is_active, created_at
               FROM users WHERE id = %s""",
            (str(user_id),),
        )
        if row is None:
            return None
        return User.model_validate(row)
