"""
Domain events for the invoice lifecycle.

Immutable event objects published after the invoice row has been committed.
Handlers react without the publisher knowing who's listening; provisioning
of machine services hangs off InvoicePaid.

Events carry the full domain object so handlers don't need to re-fetch state
and never observe a pre-payment invoice.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """
    Payment was confirmed for an invoice.

    Published on the transition to paid and again whenever a later
    reconciliation or admin edit re-confirms an already-paid invoice, so
    handlers must be idempotent.
    """
    invoice: Any = None  # Invoice, committed with status paid
    actor_id: UUID | None = None
    first_confirmation: bool = True

    @classmethod
    def create(cls, invoice: Any, actor_id: UUID, first_confirmation: bool = True) -> "InvoicePaid":
        return cls(invoice=invoice, actor_id=actor_id, first_confirmation=first_confirmation)
