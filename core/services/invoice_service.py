"""
Invoice service: the invoice payment lifecycle.

Invoices are created by admins, paid by their owners through a QR payment
intent, and confirmed by polling the gateway (reconcile). Every confirmed
payment publishes InvoicePaid, which provisions the invoice's machine
service.

Stored statuses are pending, paid and cancelled. Overdue is a read-time view
of a pending invoice past its due date (see Invoice.display_status).
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from auth.types import Caller
from clients.qr_payment_client import (
    GatewayPaymentStatus,
    PaymentStatusReport,
    QRPaymentClient,
    QRPaymentError,
)
from core.audit import AuditLogger, AuditAction, AuditEntity, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid
from core.exceptions import (
    AuthorizationError,
    ConflictError,
    GatewayError,
    NotFoundError,
    PersistenceError,
    UniqueConstraintError,
    ValidationError,
)
from core.models import Invoice, InvoiceCreate, InvoiceStatus, InvoiceUpdate, PaymentMethod
from core.store.invoice_store import InvoiceStore
from utils.timezone import assume_timezone, now_utc

logger = logging.getLogger(__name__)


@dataclass
class PaymentInitiation:
    """What the payer needs to render the QR code."""
    payment_id: str
    qr_image_base64: str | None
    amount: str | None
    time_out: str | None


@dataclass
class PaymentCheckResult:
    """
    Outcome of one reconcile call.

    status is "paid", "timeout", "cancelled" or "pending". On timeout or
    cancelled the payer must generate a new code; on pending the client
    polls again after retry_after_seconds.
    """
    status: str
    invoice: Invoice
    message: str
    payment_status: PaymentStatusReport | None = None
    retry_after_seconds: int | None = None


def gateway_paid_at(raw: str | None, tz_name: str) -> datetime:
    """
    Payment time from a gateway status report, in UTC.

    Naive values are read as wall-clock time in tz_name. A blank or
    unparseable value falls back to now; the payment itself still counts.
    """
    if not raw or not raw.strip():
        return now_utc()

    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError:
        logger.warning(f"Unparseable gateway paid_at {raw!r}, using current time")
        return now_utc()

    return assume_timezone(parsed, tz_name)


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        invoice_store: InvoiceStore,
        payment_client: QRPaymentClient,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
    ):
        self.invoice_store = invoice_store
        self.payment_client = payment_client
        self.audit = audit
        self.event_bus = event_bus
        self.config = config

    # -- guards --

    def _require_admin(self, caller: Caller, action: str) -> None:
        if not caller.is_admin:
            raise AuthorizationError(f"Only administrators can {action}")

    def _load(self, invoice_id: UUID) -> Invoice:
        invoice = self.invoice_store.get(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def _load_visible(self, caller: Caller, invoice_id: UUID) -> Invoice:
        """Load an invoice the caller owns, or any invoice for admins."""
        invoice = self._load(invoice_id)
        if not caller.is_admin and invoice.user_id != caller.id:
            raise AuthorizationError("You do not have access to this invoice")
        return invoice

    # -- invoice numbers --

    @staticmethod
    def _fallback_invoice_number() -> str:
        """
        Timestamp-derived invoice number.

        Format: INV-YYYYMMDDHHMMSSffffff-XXXX (microseconds plus 4 random hex).
        """
        stamp = now_utc().strftime("%Y%m%d%H%M%S%f")
        return f"INV-{stamp}-{secrets.token_hex(2).upper()}"

    def _next_invoice_number(self) -> str:
        number = self.invoice_store.next_invoice_number()
        if number:
            return number
        fallback = self._fallback_invoice_number()
        logger.warning(f"Invoice number generator unavailable, using fallback {fallback}")
        return fallback

    # -- CRUD --

    def create_invoice(self, caller: Caller, data: InvoiceCreate) -> Invoice:
        """
        Create a pending invoice.

        Args:
            caller: Must be an admin
            data: Invoice fields; due date given absolutely or in days from now

        Returns:
            Created invoice in PENDING status

        Raises:
            AuthorizationError: Caller is not an admin
            PersistenceError: Insert failed
        """
        self._require_admin(caller, "create invoices")

        now = now_utc()
        due_date = data.due_date if data.due_date is not None else now + timedelta(days=data.due_in_days)

        values = {
            "id": uuid4(),
            "invoice_number": self._next_invoice_number(),
            "user_id": data.user_id,
            "amount": data.amount,
            "currency": (data.currency or self.config.default_currency).upper(),
            "status": InvoiceStatus.PENDING,
            "due_date": due_date,
            "description": data.description,
            "machine_specs": data.machine_specs,
            "usage_limit_per_month": data.usage_limit_per_month,
            "usage_count": 0,
            "machine_info": data.machine_info,
            "created_by": caller.id,
            "created_at": now,
            "updated_at": now,
        }

        try:
            invoice = self.invoice_store.insert(values)
        except UniqueConstraintError:
            # One retry with a number that cannot come from the same sequence
            values["invoice_number"] = self._fallback_invoice_number()
            logger.warning(f"Invoice number collision, retrying as {values['invoice_number']}")
            invoice = self.invoice_store.insert(values)

        self.audit.log_change(
            entity_type=AuditEntity.INVOICE,
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")},
            user_id=caller.id,
        )

        logger.info(
            f"Created invoice {invoice.invoice_number} for user {invoice.user_id}: "
            f"{invoice.amount} {invoice.currency}"
        )
        return invoice

    def list_invoices(self, caller: Caller, limit: int = 100) -> list[Invoice]:
        """List invoices newest first; users only see their own."""
        return self.invoice_store.list(
            user_id=None if caller.is_admin else caller.id,
            limit=limit,
        )

    def get_invoice(self, caller: Caller, invoice_id: UUID) -> Invoice:
        """
        Get an invoice the caller may see.

        Raises:
            NotFoundError: Invoice does not exist
            AuthorizationError: Caller is neither owner nor admin
        """
        return self._load_visible(caller, invoice_id)

    def update_invoice(self, caller: Caller, invoice_id: UUID, data: InvoiceUpdate) -> Invoice:
        """
        Apply an admin edit.

        Only fields present in the request are changed. Setting status to
        paid stamps paid_at (now) and payment_method (manual) unless the
        invoice was paid before, in which case the original stamp stays.

        Raises:
            AuthorizationError: Caller is not an admin
            NotFoundError: Invoice does not exist
        """
        self._require_admin(caller, "edit invoices")
        current = self._load(invoice_id)

        values = data.model_dump(exclude_unset=True)
        if "currency" in values:
            values["currency"] = values["currency"].upper()

        marking_paid = values.get("status") == InvoiceStatus.PAID
        updated = self.invoice_store.update(
            invoice_id,
            values,
            manual_payment_at=now_utc() if marking_paid else None,
        )
        if updated is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        changes = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json"),
        )
        if changes:
            self.audit.log_change(
                entity_type=AuditEntity.INVOICE,
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes=changes,
                user_id=caller.id,
            )

        if updated.status == InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(
                invoice=updated,
                actor_id=caller.id,
                first_confirmation=current.paid_at is None,
            ))

        return updated

    def delete_invoice(self, caller: Caller, invoice_id: UUID) -> None:
        """
        Hard-delete an invoice. Provisioned machine services are kept.

        Raises:
            AuthorizationError: Caller is not an admin
            NotFoundError: Invoice does not exist
        """
        self._require_admin(caller, "delete invoices")
        current = self._load(invoice_id)

        if not self.invoice_store.delete(invoice_id):
            raise NotFoundError(f"Invoice {invoice_id} not found")

        self.audit.log_change(
            entity_type=AuditEntity.INVOICE,
            entity_id=invoice_id,
            action=AuditAction.DELETE,
            changes={"deleted": current.model_dump(mode="json")},
            user_id=caller.id,
        )
        logger.info(f"Deleted invoice {current.invoice_number}")

    # -- payment --

    def initiate_payment(self, caller: Caller, invoice_id: UUID) -> PaymentInitiation:
        """
        Create a QR payment intent for an invoice.

        Only the owner may pay. The intent references the invoice number so
        the gateway ledger can be matched by hand.

        Raises:
            NotFoundError: Invoice does not exist
            AuthorizationError: Caller is not the owner
            ConflictError: Invoice is already paid or cancelled
            GatewayError: Gateway rejected the request or is unreachable
        """
        invoice = self._load(invoice_id)

        if invoice.user_id != caller.id:
            raise AuthorizationError("Only the invoice owner can pay this invoice")

        if not invoice.accepts_payment:
            raise ConflictError(f"Invoice {invoice.invoice_number} is {invoice.status.value}")

        try:
            intent = self.payment_client.create_payment(invoice.amount, ref1=invoice.invoice_number)
        except QRPaymentError as e:
            logger.error(f"Payment intent creation failed for invoice {invoice.invoice_number}: {e}")
            raise GatewayError(str(e) or "Could not create QR payment") from e

        # The intent exists at the gateway either way; a lost payment_id only
        # means this attempt can't be reconciled and the payer starts over
        try:
            attached = self.invoice_store.attach_payment_id(invoice.id, intent.id_pay)
            if attached is None:
                logger.warning(
                    f"Invoice {invoice.invoice_number} changed state before payment "
                    f"{intent.id_pay} could be attached"
                )
        except PersistenceError as e:
            logger.error(f"Could not store payment {intent.id_pay} on invoice {invoice.invoice_number}: {e}")

        logger.info(f"Created payment {intent.id_pay} for invoice {invoice.invoice_number}")

        return PaymentInitiation(
            payment_id=intent.id_pay,
            qr_image_base64=intent.qr_image_base64,
            amount=intent.amount,
            time_out=intent.time_out,
        )

    def reconcile_payment(self, caller: Caller, invoice_id: UUID) -> PaymentCheckResult:
        """
        Poll the gateway and apply its verdict to the invoice.

        PAID moves the invoice to paid (first confirmation wins; later calls
        return the stored record) and publishes InvoicePaid. Every other
        gateway status leaves the invoice untouched, and an invoice that is
        already paid reports as paid whatever the intent says.

        Raises:
            NotFoundError: Invoice does not exist
            AuthorizationError: Caller is neither owner nor admin
            ValidationError: No payment intent on record
            GatewayError: Gateway unreachable or returned garbage
        """
        invoice = self._load_visible(caller, invoice_id)

        if not invoice.payment_id:
            raise ValidationError("This invoice has no payment in progress")

        try:
            report = self.payment_client.get_payment_status(invoice.payment_id)
        except QRPaymentError as e:
            logger.error(f"Payment status check failed for invoice {invoice.invoice_number}: {e}")
            raise GatewayError("Could not check payment status") from e

        if report.status == GatewayPaymentStatus.PAID:
            return self._confirm_gateway_payment(caller, invoice, report)

        if invoice.status == InvoiceStatus.PAID:
            # Settled by an admin or an earlier intent; the intent's state is moot
            return PaymentCheckResult(
                status="paid",
                invoice=invoice,
                message="Payment received",
                payment_status=report,
            )

        if report.status in (GatewayPaymentStatus.TIMEOUT, GatewayPaymentStatus.CANCELLED):
            return PaymentCheckResult(
                status=report.status.value.lower(),
                invoice=invoice,
                message="QR code expired or was cancelled, generate a new code to pay",
                payment_status=report,
            )

        if report.status == GatewayPaymentStatus.ERROR:
            logger.warning(f"Gateway reported ERROR for payment {invoice.payment_id}")

        return PaymentCheckResult(
            status="pending",
            invoice=invoice,
            message="Waiting for payment",
            payment_status=report,
            retry_after_seconds=self.config.payment_poll_interval_seconds,
        )

    def _confirm_gateway_payment(
        self,
        caller: Caller,
        invoice: Invoice,
        report: PaymentStatusReport,
    ) -> PaymentCheckResult:
        updated = self.invoice_store.mark_paid(
            invoice.id,
            paid_at=gateway_paid_at(report.paid_at, self.config.gateway_timezone),
            payment_method=PaymentMethod.PROMPTPAY,
            transaction_id=report.transaction_id,
        )

        first_confirmation = updated is not None
        if updated is None:
            # Already paid, by an earlier poll or an admin
            updated = self._load(invoice.id)
        else:
            self.audit.log_change(
                entity_type=AuditEntity.INVOICE,
                entity_id=invoice.id,
                action=AuditAction.UPDATE,
                changes=compute_changes(
                    invoice.model_dump(mode="json"),
                    updated.model_dump(mode="json"),
                ),
                user_id=caller.id,
            )
            logger.info(
                f"Invoice {updated.invoice_number} paid via {PaymentMethod.PROMPTPAY.value} "
                f"(transaction {report.transaction_id})"
            )

        self.event_bus.publish(InvoicePaid.create(
            invoice=updated,
            actor_id=caller.id,
            first_confirmation=first_confirmation,
        ))

        return PaymentCheckResult(
            status="paid",
            invoice=updated,
            message="Payment received",
            payment_status=report,
        )
