"""Invoice domain models.

Amounts are Decimal with two places, in the invoice's currency (THB by
default). Only pending, paid and cancelled are ever stored; overdue is
derived at read time from the due date.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

from utils.timezone import now_utc


class InvoiceStatus(str, Enum):
    """Stored invoice status."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class InvoiceDisplayStatus(str, Enum):
    """Status shown to readers. OVERDUE is never stored."""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """How a paid invoice was settled."""

    PROMPTPAY = "promptpay"  # Confirmed by the QR gateway
    MANUAL = "manual"        # Marked paid by an admin


TERMINAL_PAYMENT_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})


def derive_display_status(
    status: InvoiceStatus,
    due_date: datetime,
    now: datetime | None = None,
) -> InvoiceDisplayStatus:
    """A pending invoice past its due date reads as overdue."""
    now = now or now_utc()
    if status == InvoiceStatus.PENDING and due_date < now:
        return InvoiceDisplayStatus.OVERDUE
    return InvoiceDisplayStatus(status.value)


def _assume_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Naive datetimes from API clients (e.g. a bare date) are taken as UTC
UTCDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


class MachineSpecs(BaseModel):
    """Free-text machine resources. Unknown keys are preserved."""

    cpu: str | None = None
    ram: str | None = None
    storage: str | None = None
    bandwidth: str | None = None
    os: str | None = None
    gpu: str | None = None

    model_config = {"extra": "allow", "coerce_numbers_to_str": True}

    def is_empty(self) -> bool:
        """True when no field carries a value."""
        for value in self.model_dump().values():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            return False
        return True


class MachineInfo(BaseModel):
    """Extra machine metadata; `type` labels the provisioned machine."""

    type: str | None = None

    model_config = {"extra": "allow"}


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    user_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)
    due_date: UTCDatetime | None = None
    due_in_days: int | None = Field(None, ge=0, le=3650)
    description: str | None = Field(None, max_length=2000)
    machine_specs: MachineSpecs | None = None
    usage_limit_per_month: int | None = Field(None, ge=0)
    machine_info: MachineInfo | None = None

    @model_validator(mode="after")
    def validate_due(self) -> "InvoiceCreate":
        """Exactly one way of expressing the due date."""
        if self.due_date is None and self.due_in_days is None:
            raise ValueError("due_date or due_in_days is required")
        if self.due_date is not None and self.due_in_days is not None:
            raise ValueError("Provide due_date or due_in_days, not both")
        return self


class InvoiceUpdate(BaseModel):
    """
    Fields an admin may change. Only fields present in the request are
    applied, so description, machine_specs, usage_limit_per_month and
    machine_info can be cleared with an explicit null.
    """

    amount: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    currency: str | None = Field(None, min_length=3, max_length=3)
    due_date: UTCDatetime | None = None
    description: str | None = Field(None, max_length=2000)
    status: InvoiceStatus | None = None
    machine_specs: MachineSpecs | None = None
    usage_limit_per_month: int | None = Field(None, ge=0)
    machine_info: MachineInfo | None = None

    @field_validator("status", mode="before")
    @classmethod
    def reject_derived_status(cls, value):
        if value == InvoiceDisplayStatus.OVERDUE.value:
            raise ValueError("overdue is derived from due_date and cannot be stored")
        return value

    @model_validator(mode="after")
    def reject_null_required(self) -> "InvoiceUpdate":
        for name in ("amount", "currency", "due_date", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    invoice_number: str
    user_id: UUID
    amount: Decimal
    currency: str
    status: InvoiceStatus
    due_date: datetime
    description: str | None = None
    machine_specs: MachineSpecs | None = None
    usage_limit_per_month: int | None = None
    usage_count: int = 0
    machine_info: MachineInfo | None = None
    payment_id: str | None = None
    transaction_id: str | None = None
    paid_at: datetime | None = None
    payment_method: PaymentMethod | None = None
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    def display_status(self, now: datetime | None = None) -> InvoiceDisplayStatus:
        """Status as readers see it (pending past due reads as overdue)."""
        return derive_display_status(self.status, self.due_date, now)

    @property
    def has_machine_specs(self) -> bool:
        """Whether paying this invoice should provision a machine service."""
        return self.machine_specs is not None and not self.machine_specs.is_empty()

    @property
    def accepts_payment(self) -> bool:
        """Whether a new payment intent may be created."""
        return self.status not in TERMINAL_PAYMENT_STATUSES
