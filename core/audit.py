"""
Audit trail for invoice and machine service changes.

Rows in audit_log are append-only and attributed to the caller who made
the change (or, for provisioning triggered by a payment, the invoice owner).
Updates record old and new values per column; creates and deletes record
the full entity.
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class AuditEntity(str, Enum):
    """Audited entity kinds, stored in audit_log.entity_type."""

    INVOICE = "invoice"
    MACHINE_SERVICE = "machine_service"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Diff two JSON-mode dumps of the same entity.

    Args:
        old: State before the change
        new: State after the change
        exclude_fields: Keys to skip; updated_at when not given

    Returns:
        {field: {"old": ..., "new": ...}} for every key whose value differs,
        including keys present on one side only. Empty when nothing changed.
    """
    exclude = exclude_fields or {"updated_at"}

    return {
        key: {"old": old.get(key), "new": new.get(key)}
        for key in sorted(set(old) | set(new))
        if key not in exclude and old.get(key) != new.get(key)
    }


class AuditLogger:
    """
    Writes audit_log rows.

    Pass model_dump(mode="json") output in changes so UUIDs, Decimals and
    datetimes survive the JSONB column.

    Usage:
        audit.log_change(
            entity_type=AuditEntity.INVOICE,
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes=compute_changes(old.model_dump(mode="json"), new.model_dump(mode="json")),
            user_id=caller.id,
        )
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: AuditEntity | str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID,
    ) -> None:
        """
        Record one change.

        changes holds {"created": {...}} for CREATE, a compute_changes()
        diff for UPDATE and {"deleted": {...}} for DELETE.
        """
        self.postgres.execute(
            """
            INSERT INTO audit_log (id, user_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                user_id,
                AuditEntity(entity_type).value,
                entity_id,
                action.value,
                Json(changes),
                now_utc(),
            )
        )
