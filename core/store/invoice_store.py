"""
Record store for invoices.

Every mutation is a single statement with RETURNING, so state changes are
decided by the database row rather than by a copy held in memory. Payment
stamps use COALESCE/CASE on the row's existing paid_at, which keeps the
first confirmation authoritative under concurrent writers.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import Json
from pydantic import BaseModel

from clients.postgres_client import PostgresClient
from core.exceptions import PersistenceError, UniqueConstraintError
from core.models import Invoice, InvoiceStatus, PaymentMethod
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_INSERT_COLUMNS = (
    "id", "invoice_number", "user_id", "amount", "currency", "status",
    "due_date", "description", "machine_specs", "usage_limit_per_month",
    "usage_count", "machine_info", "created_by", "created_at", "updated_at",
)

# Columns an admin edit may set directly
UPDATABLE_COLUMNS = frozenset({
    "amount", "currency", "due_date", "description", "status",
    "machine_specs", "usage_limit_per_month", "machine_info",
})

_JSON_COLUMNS = frozenset({"machine_specs", "machine_info"})


def _adapt(column: str, value: Any) -> Any:
    """Convert a model value into a psycopg2 parameter."""
    if value is None:
        return None
    if column in _JSON_COLUMNS:
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json", exclude_none=True)
        return Json(value)
    if isinstance(value, Enum):
        return value.value
    return value


class InvoiceStore:
    """Database operations for invoices."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def next_invoice_number(self) -> str | None:
        """
        Ask the database for the next invoice number.

        Returns None if generate_invoice_number() is unavailable or fails;
        the caller falls back to a timestamp-derived number.
        """
        try:
            return self._db.execute_scalar("SELECT generate_invoice_number()")
        except psycopg2.Error as e:
            logger.warning(f"generate_invoice_number() failed: {e}")
            return None

    def insert(self, values: dict[str, Any]) -> Invoice:
        """
        Insert an invoice row.

        Raises:
            UniqueConstraintError: invoice_number already taken
            PersistenceError: any other database failure
        """
        params = tuple(_adapt(col, values.get(col)) for col in _INSERT_COLUMNS)
        placeholders = ", ".join(["%s"] * len(_INSERT_COLUMNS))

        try:
            rows = self._db.execute_returning(
                f"""
                INSERT INTO invoices ({', '.join(_INSERT_COLUMNS)})
                VALUES ({placeholders})
                RETURNING *
                """,
                params,
            )
        except pg_errors.UniqueViolation as e:
            raise UniqueConstraintError(
                f"Invoice number {values.get('invoice_number')} already exists"
            ) from e
        except psycopg2.Error as e:
            logger.error(f"Invoice insert failed: {e}")
            raise PersistenceError("Could not create invoice") from e

        return Invoice.model_validate(rows[0])

    def get(self, invoice_id: UUID) -> Invoice | None:
        """Get invoice by ID, None if missing."""
        row = self._db.execute_single(
            "SELECT * FROM invoices WHERE id = %s",
            (invoice_id,)
        )
        if row is None:
            return None
        return Invoice.model_validate(row)

    def get_many(self, invoice_ids: list[UUID]) -> list[Invoice]:
        """Get invoices by ID. Missing IDs are skipped."""
        if not invoice_ids:
            return []

        rows = self._db.execute(
            "SELECT * FROM invoices WHERE id = ANY(%s::uuid[])",
            (list(invoice_ids),)
        )
        return [Invoice.model_validate(row) for row in rows]

    def list(self, user_id: UUID | None = None, limit: int = 100) -> list[Invoice]:
        """
        List invoices newest first.

        Args:
            user_id: Restrict to one owner; None lists every invoice
            limit: Maximum results
        """
        if user_id is None:
            rows = self._db.execute(
                "SELECT * FROM invoices ORDER BY created_at DESC LIMIT %s",
                (limit,)
            )
        else:
            rows = self._db.execute(
                """
                SELECT * FROM invoices
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (user_id, limit)
            )
        return [Invoice.model_validate(row) for row in rows]

    def update(
        self,
        invoice_id: UUID,
        values: dict[str, Any],
        manual_payment_at: datetime | None = None,
    ) -> Invoice | None:
        """
        Update invoice columns in one statement.

        Args:
            invoice_id: Invoice UUID
            values: Column values; keys outside UPDATABLE_COLUMNS are ignored
            manual_payment_at: When set, stamp paid_at with this time and
                payment_method 'manual', but only if paid_at is still empty

        Returns:
            Updated invoice, None if it doesn't exist

        Raises:
            PersistenceError: On database failure
        """
        set_parts = []
        params: list[Any] = []

        for column, value in values.items():
            if column not in UPDATABLE_COLUMNS:
                logger.warning(f"Ignoring non-updatable column '{column}' on invoice {invoice_id}")
                continue
            set_parts.append(f"{column} = %s")
            params.append(_adapt(column, value))

        if manual_payment_at is not None:
            # Right-hand side sees the row before this UPDATE
            set_parts.append("payment_method = CASE WHEN paid_at IS NULL THEN %s ELSE payment_method END")
            params.append(PaymentMethod.MANUAL.value)
            set_parts.append("paid_at = COALESCE(paid_at, %s)")
            params.append(manual_payment_at)

        set_parts.append("updated_at = %s")
        params.append(now_utc())
        params.append(invoice_id)

        try:
            rows = self._db.execute_returning(
                f"""
                UPDATE invoices
                SET {', '.join(set_parts)}
                WHERE id = %s
                RETURNING *
                """,
                tuple(params),
            )
        except psycopg2.Error as e:
            logger.error(f"Invoice {invoice_id} update failed: {e}")
            raise PersistenceError("Could not update invoice") from e

        return Invoice.model_validate(rows[0]) if rows else None

    def attach_payment_id(self, invoice_id: UUID, payment_id: str) -> Invoice | None:
        """
        Record the gateway payment intent on a payable invoice.

        Returns None if the invoice is missing or became paid/cancelled.

        Raises:
            PersistenceError: On database failure
        """
        try:
            rows = self._db.execute_returning(
                """
                UPDATE invoices
                SET payment_id = %s, updated_at = %s
                WHERE id = %s AND status NOT IN (%s, %s)
                RETURNING *
                """,
                (
                    payment_id, now_utc(), invoice_id,
                    InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value,
                ),
            )
        except psycopg2.Error as e:
            logger.error(f"Could not attach payment {payment_id} to invoice {invoice_id}: {e}")
            raise PersistenceError("Could not record payment intent") from e

        return Invoice.model_validate(rows[0]) if rows else None

    def mark_paid(
        self,
        invoice_id: UUID,
        paid_at: datetime,
        payment_method: PaymentMethod,
        transaction_id: str | None = None,
    ) -> Invoice | None:
        """
        Transition an unpaid invoice to paid.

        paid_at and payment_method are only stamped if the invoice has never
        been paid before. Returns None when the invoice is missing or already
        paid, in which case nothing was written.

        Raises:
            PersistenceError: On database failure
        """
        try:
            rows = self._db.execute_returning(
                """
                UPDATE invoices
                SET status = %s,
                    transaction_id = COALESCE(%s, transaction_id),
                    payment_method = CASE WHEN paid_at IS NULL THEN %s ELSE payment_method END,
                    paid_at = COALESCE(paid_at, %s),
                    updated_at = %s
                WHERE id = %s AND status <> %s
                RETURNING *
                """,
                (
                    InvoiceStatus.PAID.value,
                    transaction_id,
                    payment_method.value,
                    paid_at,
                    now_utc(),
                    invoice_id,
                    InvoiceStatus.PAID.value,
                ),
            )
        except psycopg2.Error as e:
            logger.error(f"Invoice {invoice_id} payment update failed: {e}")
            raise PersistenceError("Could not record invoice payment") from e

        return Invoice.model_validate(rows[0]) if rows else None

    def delete(self, invoice_id: UUID) -> bool:
        """
        Hard-delete an invoice. Machine services are left in place.

        Returns:
            True if deleted, False if not found

        Raises:
            PersistenceError: On database failure
        """
        try:
            rows = self._db.execute_returning(
                "DELETE FROM invoices WHERE id = %s RETURNING id",
                (invoice_id,)
            )
        except psycopg2.Error as e:
            logger.error(f"Invoice {invoice_id} delete failed: {e}")
            raise PersistenceError("Could not delete invoice") from e

        return bool(rows)
