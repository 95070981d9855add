"""Record store for machine services."""

import logging
from typing import Any
from uuid import UUID

import psycopg2
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.exceptions import PersistenceError
from core.models import MachineService

logger = logging.getLogger(__name__)

_INSERT_COLUMNS = (
    "id", "user_id", "invoice_id", "service_name", "machine_type",
    "machine_specs", "usage_limit_per_month", "usage_count", "start_date",
    "expiry_date", "status", "created_at", "updated_at",
)


class MachineServiceStore:
    """Database operations for machine services."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def get_by_invoice(self, invoice_id: UUID) -> MachineService | None:
        """Get the service provisioned from an invoice, if any."""
        row = self._db.execute_single(
            "SELECT * FROM machine_services WHERE invoice_id = %s",
            (invoice_id,)
        )
        if row is None:
            return None
        return MachineService.model_validate(row)

    def insert_if_absent(self, values: dict[str, Any]) -> MachineService | None:
        """
        Insert a service unless one already exists for the invoice.

        The unique constraint on invoice_id decides races between concurrent
        provisioners; the loser gets None back and nothing is written.

        Raises:
            PersistenceError: On database failure
        """
        params = []
        for column in _INSERT_COLUMNS:
            value = values.get(column)
            if column == "machine_specs":
                value = Json(value.model_dump(mode="json", exclude_none=True))
            elif column == "status":
                value = value.value
            params.append(value)

        try:
            rows = self._db.execute_returning(
                f"""
                INSERT INTO machine_services ({', '.join(_INSERT_COLUMNS)})
                VALUES ({', '.join(['%s'] * len(_INSERT_COLUMNS))})
                ON CONFLICT (invoice_id) DO NOTHING
                RETURNING *
                """,
                tuple(params),
            )
        except psycopg2.Error as e:
            logger.error(f"Machine service insert failed for invoice {values.get('invoice_id')}: {e}")
            raise PersistenceError("Could not create machine service") from e

        return MachineService.model_validate(rows[0]) if rows else None

    def list(self, user_id: UUID | None = None, limit: int = 100) -> list[MachineService]:
        """List services newest first, optionally for one user."""
        if user_id is None:
            rows = self._db.execute(
                "SELECT * FROM machine_services ORDER BY created_at DESC LIMIT %s",
                (limit,)
            )
        else:
            rows = self._db.execute(
                """
                SELECT * FROM machine_services
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (user_id, limit)
            )
        return [MachineService.model_validate(row) for row in rows]
