"""
cloudbill API entrypoint.

Wires Vault-sourced clients into the stores and services, subscribes the
provisioning handler to InvoicePaid, and mounts the routers.

Run with: uvicorn main:create_default_app --factory
"""

from dotenv import load_dotenv
load_dotenv()

import logging
import sys

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.invoices import create_invoices_router
from api.middleware import RequestIDMiddleware
from api.services import create_services_router
from auth.api import create_auth_router
from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from clients.postgres_client import PostgresClient
from clients.qr_payment_client import QRPaymentClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import get_database_url, get_valkey_url, get_qr_payment_config
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.services.invoice_service import InvoiceService
from core.services.provisioning_service import ProvisioningService
from core.store.invoice_store import InvoiceStore
from core.store.machine_service_store import MachineServiceStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def build_services(
    postgres: PostgresClient,
    payment_client: QRPaymentClient,
    config: BillingConfig | None = None,
) -> dict:
    """
    Construct the billing services and connect InvoicePaid to provisioning.

    Returns:
        {"invoice": InvoiceService, "provisioning": ProvisioningService}
    """
    config = config or BillingConfig()
    audit = AuditLogger(postgres)
    event_bus = EventBus()

    invoice_store = InvoiceStore(postgres)
    provisioning = ProvisioningService(
        MachineServiceStore(postgres), invoice_store, audit, config
    )
    event_bus.subscribe("InvoicePaid", handle_invoice_paid(provisioning))

    return {
        "invoice": InvoiceService(invoice_store, payment_client, audit, event_bus, config),
        "provisioning": provisioning,
    }


def create_app(
    services: dict,
    session_manager: SessionManager,
    auth_db: AuthDatabase,
    auth_config: AuthConfig | None = None,
) -> FastAPI:
    """FastAPI app with auth middleware, error handlers and billing routes."""
    auth_config = auth_config or AuthConfig()

    app = FastAPI(title="cloudbill")

    # Added last runs first: request ID is assigned before auth
    app.add_middleware(
        AuthMiddleware,
        session_manager=session_manager,
        auth_db=auth_db,
        config=auth_config,
    )
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_invoices_router(services), prefix="/api")
    app.include_router(create_services_router(services), prefix="/api")
    app.include_router(create_auth_router(session_manager, auth_db, auth_config), prefix="/auth")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


def create_default_app() -> FastAPI:
    """Build the production app from Vault configuration."""
    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    payment_client = QRPaymentClient(get_qr_payment_config()["api_url"])

    auth_config = AuthConfig()
    app = create_app(
        services=build_services(postgres, payment_client),
        session_manager=SessionManager(valkey, auth_config),
        auth_db=AuthDatabase(postgres),
        auth_config=auth_config,
    )

    @app.on_event("shutdown")
    def close_clients():
        postgres.close()
        valkey.close()

    logger.info("cloudbill API ready")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_default_app(), host="0.0.0.0", port=8000)
