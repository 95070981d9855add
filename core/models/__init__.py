"""Core domain models."""

from core.models.invoice import (
    Invoice,
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceStatus,
    InvoiceDisplayStatus,
    PaymentMethod,
    MachineSpecs,
    MachineInfo,
    derive_display_status,
)
from core.models.machine_service import MachineService, MachineServiceStatus, InvoiceSummary

__all__ = [
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceStatus", "InvoiceDisplayStatus",
    "PaymentMethod", "MachineSpecs", "MachineInfo", "derive_display_status",
    # MachineService
    "MachineService", "MachineServiceStatus", "InvoiceSummary",
]
