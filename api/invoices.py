"""Invoice routes: CRUD, payment initiation and payment checks."""

from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from api.dependencies import get_caller, get_request_id
from core.models import Invoice, InvoiceCreate, InvoiceUpdate
from utils.timezone import now_utc


def render_invoice(invoice: Invoice, now=None) -> dict:
    """Invoice as JSON with its read-time display_status."""
    data = invoice.model_dump(mode="json")
    data["display_status"] = invoice.display_status(now).value
    return data


def create_invoices_router(services: dict) -> APIRouter:
    """Invoice routes. Handlers are sync; FastAPI runs them in its threadpool."""
    router = APIRouter(tags=["invoices"])

    invoice_svc = services["invoice"]

    @router.get("/invoices")
    def list_invoices(request: Request, limit: int = Query(100, ge=1, le=500)):
        invoices = invoice_svc.list_invoices(get_caller(request), limit=limit)
        now = now_utc()
        return success_response(
            [render_invoice(inv, now) for inv in invoices],
            get_request_id(request),
        ).model_dump(mode="json")

    @router.post("/invoices", status_code=201)
    def create_invoice(request: Request, body: InvoiceCreate):
        invoice = invoice_svc.create_invoice(get_caller(request), body)
        return success_response(
            render_invoice(invoice), get_request_id(request)
        ).model_dump(mode="json")

    @router.get("/invoices/{invoice_id}")
    def get_invoice(request: Request, invoice_id: UUID):
        invoice = invoice_svc.get_invoice(get_caller(request), invoice_id)
        return success_response(
            render_invoice(invoice), get_request_id(request)
        ).model_dump(mode="json")

    @router.put("/invoices/{invoice_id}")
    def update_invoice(request: Request, invoice_id: UUID, body: InvoiceUpdate):
        invoice = invoice_svc.update_invoice(get_caller(request), invoice_id, body)
        return success_response(
            render_invoice(invoice), get_request_id(request)
        ).model_dump(mode="json")

    @router.delete("/invoices/{invoice_id}")
    def delete_invoice(request: Request, invoice_id: UUID):
        invoice_svc.delete_invoice(get_caller(request), invoice_id)
        return success_response(
            {"id": str(invoice_id), "deleted": True}, get_request_id(request)
        ).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/pay")
    def pay_invoice(request: Request, invoice_id: UUID):
        payment = invoice_svc.initiate_payment(get_caller(request), invoice_id)
        return success_response(
            asdict(payment), get_request_id(request)
        ).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/check-payment")
    def check_payment(request: Request, invoice_id: UUID):
        result = invoice_svc.reconcile_payment(get_caller(request), invoice_id)
        data = {
            "status": result.status,
            "message": result.message,
            "invoice": render_invoice(result.invoice),
            "payment_status": (
                result.payment_status.model_dump(mode="json") if result.payment_status else None
            ),
        }
        if result.retry_after_seconds is not None:
            data["retry_after_seconds"] = result.retry_after_seconds
        return success_response(data, get_request_id(request)).model_dump(mode="json")

    return router
