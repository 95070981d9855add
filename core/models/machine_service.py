"""Machine service domain models.

A machine service is the resource grant produced by a paid invoice that
carries machine specs. One service per invoice, valid for a fixed period.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from core.models.invoice import MachineSpecs
from utils.timezone import now_utc


class MachineServiceStatus(str, Enum):
    """Machine service status. EXPIRED is normally derived at read time."""

    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class MachineService(BaseModel):
    """Full machine service entity as stored."""

    id: UUID
    user_id: UUID
    invoice_id: UUID
    service_name: str
    machine_type: str
    machine_specs: MachineSpecs
    usage_limit_per_month: int = 0  # 0 = unlimited
    usage_count: int = 0
    start_date: datetime
    expiry_date: datetime
    status: MachineServiceStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    def display_status(self, now: datetime | None = None) -> MachineServiceStatus:
        """An active service past its expiry date reads as expired."""
        now = now or now_utc()
        if self.status == MachineServiceStatus.ACTIVE and now > self.expiry_date:
            return MachineServiceStatus.EXPIRED
        return self.status


class InvoiceSummary(BaseModel):
    """Originating invoice details shown alongside a machine service."""

    id: UUID
    invoice_number: str
    amount: Decimal
    currency: str
