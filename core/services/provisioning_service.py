"""
Machine service provisioning.

A paid invoice that carries machine specs grants exactly one machine service.
provision_if_paid_and_specced() is the single entry point; it is reached from
every path that confirms payment (gateway reconciliation and admin edits) via
the InvoicePaid handler, and may be called any number of times for the same
invoice.
"""

import logging
from uuid import UUID, uuid4

from auth.types import Caller
from core.audit import AuditLogger, AuditAction, AuditEntity
from core.config import BillingConfig
from core.models import (
    Invoice,
    InvoiceStatus,
    InvoiceSummary,
    MachineService,
    MachineServiceStatus,
)
from core.store.invoice_store import InvoiceStore
from core.store.machine_service_store import MachineServiceStore
from utils.timezone import add_months, now_utc

logger = logging.getLogger(__name__)


class ProvisioningService:
    """Creates and lists machine services."""

    def __init__(
        self,
        machine_service_store: MachineServiceStore,
        invoice_store: InvoiceStore,
        audit: AuditLogger,
        config: BillingConfig,
    ):
        self.machine_service_store = machine_service_store
        self.invoice_store = invoice_store
        self.audit = audit
        self.config = config

    def provision_if_paid_and_specced(
        self,
        invoice: Invoice,
        actor_id: UUID | None = None,
    ) -> MachineService | None:
        """
        Create the machine service for a paid invoice, at most once.

        Args:
            invoice: Invoice as committed
            actor_id: Who confirmed the payment (audit attribution); falls
                back to the invoice owner

        Returns:
            The newly created service, or None when nothing was created
            (unpaid, no specs, or a service already exists)

        Raises:
            PersistenceError: If the insert fails. The invoice payment stands.
        """
        if invoice.status != InvoiceStatus.PAID:
            return None

        if not invoice.has_machine_specs:
            logger.debug(f"Invoice {invoice.invoice_number} has no machine specs, nothing to provision")
            return None

        existing = self.machine_service_store.get_by_invoice(invoice.id)
        if existing is not None:
            logger.info(
                f"Machine service {existing.id} already exists for invoice {invoice.invoice_number}"
            )
            return None

        now = now_utc()
        start_date = invoice.paid_at or now
        machine_type = (invoice.machine_info.type if invoice.machine_info else None) \
            or self.config.default_machine_type
        service_name = (invoice.description or "").strip() \
            or f"service from {invoice.invoice_number}"

        service = self.machine_service_store.insert_if_absent({
            "id": uuid4(),
            "user_id": invoice.user_id,
            "invoice_id": invoice.id,
            "service_name": service_name,
            "machine_type": machine_type,
            "machine_specs": invoice.machine_specs,
            "usage_limit_per_month": invoice.usage_limit_per_month or 0,
            "usage_count": 0,
            "start_date": start_date,
            "expiry_date": add_months(start_date, self.config.service_period_months),
            "status": MachineServiceStatus.ACTIVE,
            "created_at": now,
            "updated_at": now,
        })

        if service is None:
            # Lost the race to a concurrent provisioner
            logger.info(f"Machine service for invoice {invoice.invoice_number} was created concurrently")
            return None

        self.audit.log_change(
            entity_type=AuditEntity.MACHINE_SERVICE,
            entity_id=service.id,
            action=AuditAction.CREATE,
            changes={"created": service.model_dump(mode="json")},
            user_id=actor_id or invoice.user_id,
        )

        logger.info(
            f"Provisioned machine service {service.id} ({service.machine_type}) for invoice "
            f"{invoice.invoice_number}, valid until {service.expiry_date.isoformat()}"
        )
        return service

    def list_services(self, caller: Caller, limit: int = 100) -> list[dict]:
        """
        List machine services visible to the caller, newest first.

        Admins see every service; users see their own. Each entry carries the
        service, its derived display status, and a summary of the originating
        invoice (None if that invoice has since been deleted).

        Returns:
            [{"service": MachineService, "display_status": MachineServiceStatus,
              "invoice": InvoiceSummary | None}, ...]
        """
        services = self.machine_service_store.list(
            user_id=None if caller.is_admin else caller.id,
            limit=limit,
        )

        invoices = {
            inv.id: inv
            for inv in self.invoice_store.get_many(list({s.invoice_id for s in services}))
        }

        now = now_utc()
        results = []
        for service in services:
            invoice = invoices.get(service.invoice_id)
            results.append({
                "service": service,
                "display_status": service.display_status(now),
                "invoice": InvoiceSummary.model_validate(invoice, from_attributes=True) if invoice else None,
            })
        return results
