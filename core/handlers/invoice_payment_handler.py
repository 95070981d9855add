"""
Handler for InvoicePaid events.

On invoice payment, provisions the machine service the invoice pays for.
"""

import logging
from typing import Callable

from core.events import InvoicePaid

logger = logging.getLogger(__name__)


def handle_invoice_paid(provisioning_service) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        provisioning_service: ProvisioningService instance

    Returns:
        Handler callable that provisions the invoice's machine service
    """

    def handler(event: InvoicePaid):
        invoice = event.invoice

        if not event.first_confirmation:
            logger.debug(f"Re-confirmed payment for invoice {invoice.invoice_number}, checking provisioning")

        provisioning_service.provision_if_paid_and_specced(invoice, actor_id=event.actor_id)

    return handler
