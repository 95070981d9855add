"""Shared test fixtures for the cloudbill test suite.

Stores are replaced by in-memory doubles that apply the same conditional
update rules as the SQL in core/store (first paid_at wins, mark_paid skips
paid rows, one machine service per invoice). SQL text itself is covered by
tests/core/store against a mocked PostgresClient.
"""

import itertools
from decimal import Decimal
from enum import Enum
from datetime import timedelta
from typing import Any
from unittest.mock import Mock
from uuid import UUID, uuid4

import pytest
from pydantic import BaseModel

from auth.types import Caller, UserRole
from clients.qr_payment_client import QRPaymentClient, PaymentIntent
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.exceptions import UniqueConstraintError
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.models import (
    Invoice,
    InvoiceStatus,
    MachineService,
    MachineSpecs,
    PaymentMethod,
)
from core.services.invoice_service import InvoiceService
from core.services.provisioning_service import ProvisioningService
from core.store.invoice_store import UPDATABLE_COLUMNS
from utils.timezone import now_utc


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

ADMIN_ID = UUID("00000000-0000-0000-0000-00000000000a")
USER_ID = UUID("00000000-0000-0000-0000-000000000001")
OTHER_USER_ID = UUID("00000000-0000-0000-0000-000000000002")

ADMIN = Caller(id=ADMIN_ID, role=UserRole.ADMIN)
USER = Caller(id=USER_ID, role=UserRole.USER)
OTHER_USER = Caller(id=OTHER_USER_ID, role=UserRole.USER)


# =============================================================================
# IN-MEMORY STORES
# =============================================================================


def _plain(value: Any) -> Any:
    """Turn a model value into what a database row would hold."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, Enum):
        return value.value
    return value


class InMemoryInvoiceStore:
    """InvoiceStore double keeping rows in a dict."""

    def __init__(self):
        self.rows: dict[UUID, dict] = {}
        self.number_generator_available = True
        self._sequence = itertools.count(1)

    def next_invoice_number(self) -> str | None:
        if not self.number_generator_available:
            return None
        return f"INV-202401-{next(self._sequence):05d}"

    def insert(self, values: dict) -> Invoice:
        number = values["invoice_number"]
        if any(row["invoice_number"] == number for row in self.rows.values()):
            raise UniqueConstraintError(f"Invoice number {number} already exists")

        row = {
            "payment_id": None,
            "transaction_id": None,
            "paid_at": None,
            "payment_method": None,
        }
        row.update({key: _plain(value) for key, value in values.items()})
        self.rows[row["id"]] = row
        return Invoice.model_validate(row)

    def get(self, invoice_id: UUID) -> Invoice | None:
        row = self.rows.get(invoice_id)
        return Invoice.model_validate(row) if row else None

    def get_many(self, invoice_ids: list[UUID]) -> list[Invoice]:
        return [Invoice.model_validate(self.rows[i]) for i in invoice_ids if i in self.rows]

    def list(self, user_id: UUID | None = None, limit: int = 100) -> list[Invoice]:
        rows = [r for r in self.rows.values() if user_id is None or r["user_id"] == user_id]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return [Invoice.model_validate(r) for r in rows[:limit]]

    def update(self, invoice_id, values, manual_payment_at=None) -> Invoice | None:
        row = self.rows.get(invoice_id)
        if row is None:
            return None
        for column, value in values.items():
            if column in UPDATABLE_COLUMNS:
                row[column] = _plain(value)
        if manual_payment_at is not None and row["paid_at"] is None:
            row["paid_at"] = manual_payment_at
            row["payment_method"] = PaymentMethod.MANUAL.value
        row["updated_at"] = now_utc()
        return Invoice.model_validate(row)

    def attach_payment_id(self, invoice_id, payment_id) -> Invoice | None:
        row = self.rows.get(invoice_id)
        if row is None or row["status"] in ("paid", "cancelled"):
            return None
        row["payment_id"] = payment_id
        row["updated_at"] = now_utc()
        return Invoice.model_validate(row)

    def mark_paid(self, invoice_id, paid_at, payment_method, transaction_id=None) -> Invoice | None:
        row = self.rows.get(invoice_id)
        if row is None or row["status"] == "paid":
            return None
        row["status"] = "paid"
        if transaction_id is not None:
            row["transaction_id"] = transaction_id
        if row["paid_at"] is None:
            row["paid_at"] = paid_at
            row["payment_method"] = payment_method.value
        row["updated_at"] = now_utc()
        return Invoice.model_validate(row)

    def delete(self, invoice_id) -> bool:
        return self.rows.pop(invoice_id, None) is not None


class InMemoryMachineServiceStore:
    """MachineServiceStore double with the unique invoice_id rule."""

    def __init__(self):
        self.rows: dict[UUID, dict] = {}

    def get_by_invoice(self, invoice_id: UUID) -> MachineService | None:
        for row in self.rows.values():
            if row["invoice_id"] == invoice_id:
                return MachineService.model_validate(row)
        return None

    def insert_if_absent(self, values: dict) -> MachineService | None:
        if any(r["invoice_id"] == values["invoice_id"] for r in self.rows.values()):
            return None
        row = {key: _plain(value) for key, value in values.items()}
        self.rows[row["id"]] = row
        return MachineService.model_validate(row)

    def for_invoice(self, invoice_id: UUID) -> list[dict]:
        return [r for r in self.rows.values() if r["invoice_id"] == invoice_id]

    def list(self, user_id: UUID | None = None, limit: int = 100) -> list[MachineService]:
        rows = [r for r in self.rows.values() if user_id is None or r["user_id"] == user_id]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return [MachineService.model_validate(r) for r in rows[:limit]]


# =============================================================================
# ENTITY BUILDERS
# =============================================================================


def make_invoice(**overrides) -> Invoice:
    """Build an Invoice with sensible defaults, no store involved."""
    now = now_utc()
    data = {
        "id": uuid4(),
        "invoice_number": "INV-202401-00001",
        "user_id": USER_ID,
        "amount": Decimal("299.00"),
        "currency": "THB",
        "status": InvoiceStatus.PENDING,
        "due_date": now + timedelta(days=30),
        "description": None,
        "machine_specs": None,
        "usage_limit_per_month": None,
        "usage_count": 0,
        "machine_info": None,
        "created_by": ADMIN_ID,
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return Invoice.model_validate(data)


def seed_invoice(store: InMemoryInvoiceStore, **overrides) -> Invoice:
    """Insert an invoice straight into the store, bypassing the service."""
    overrides.setdefault("invoice_number", store.next_invoice_number())
    invoice = make_invoice(**overrides)
    store.rows[invoice.id] = {key: _plain(value) for key, value in dict(invoice).items()}
    return invoice


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def billing_config() -> BillingConfig:
    return BillingConfig()


@pytest.fixture
def invoice_store() -> InMemoryInvoiceStore:
    return InMemoryInvoiceStore()


@pytest.fixture
def machine_service_store() -> InMemoryMachineServiceStore:
    return InMemoryMachineServiceStore()


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def payment_client():
    client = Mock(spec=QRPaymentClient)
    client.create_payment.return_value = PaymentIntent(
        id_pay="PAY-1",
        qr_image_base64="iVBORw0KGgo=",
        amount="299.00",
        time_out="900",
    )
    return client


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def provisioning_service(machine_service_store, invoice_store, audit, billing_config):
    return ProvisioningService(machine_service_store, invoice_store, audit, billing_config)


@pytest.fixture
def invoice_service(invoice_store, payment_client, audit, event_bus, billing_config, provisioning_service):
    """InvoiceService with InvoicePaid wired to provisioning, as in main.build_services."""
    event_bus.subscribe("InvoicePaid", handle_invoice_paid(provisioning_service))
    return InvoiceService(invoice_store, payment_client, audit, event_bus, billing_config)


@pytest.fixture
def specs() -> MachineSpecs:
    return MachineSpecs(cpu="4 vCPU", ram="8 GB", storage="100 GB SSD")


# =============================================================================
# CALLER AND BUILDER FIXTURES
# =============================================================================


@pytest.fixture
def admin() -> Caller:
    return ADMIN


@pytest.fixture
def user() -> Caller:
    return USER


@pytest.fixture
def other_user() -> Caller:
    return OTHER_USER


@pytest.fixture
def invoice_factory():
    """Build detached Invoice objects: invoice_factory(status=..., ...)."""
    return make_invoice


@pytest.fixture
def seeded_invoice(invoice_store):
    """Insert invoices directly: seeded_invoice(machine_specs=..., ...)."""
    def seed(**overrides) -> Invoice:
        return seed_invoice(invoice_store, **overrides)
    return seed
