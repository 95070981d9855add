"""HTTP interface: response envelope, error mapping and billing routers."""

from api.base import (
    APIError,
    APIMeta,
    APIResponse,
    success_response,
    error_response,
    ErrorCodes,
)
from api.errors import register_error_handlers
from api.invoices import create_invoices_router, render_invoice
from api.services import create_services_router
