"""HTTP tests for /api/invoices over in-memory stores and a mocked gateway."""

import inspect
from datetime import datetime, timedelta, timezone

from fastapi.routing import APIRoute

from clients.qr_payment_client import (
    GatewayPaymentStatus,
    PaymentStatusReport,
    QRPaymentError,
)
from core.models import InvoiceStatus
from utils.timezone import now_utc


def _create_body(user, **overrides) -> dict:
    body = {
        "user_id": str(user.id),
        "amount": "299.00",
        "due_in_days": 30,
        "description": "VM hosting March",
        "machine_specs": {"cpu": "4 vCPU", "ram": "8 GB"},
    }
    body.update(overrides)
    return body


# =============================================================================
# CRUD
# =============================================================================


class TestCreateInvoice:

    def test_admin_creates_pending_invoice(self, admin_client, user):
        response = admin_client.post("/api/invoices", json=_create_body(user))

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["status"] == "pending"
        assert data["display_status"] == "pending"
        assert data["currency"] == "THB"
        assert data["invoice_number"].startswith("INV-")
        assert data["machine_specs"]["cpu"] == "4 vCPU"

    def test_user_cannot_create(self, user_client, user):
        response = user_client.post("/api/invoices", json=_create_body(user))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "AUTHORIZATION_DENIED"

    def test_missing_due_is_400(self, admin_client, user):
        body = _create_body(user)
        del body["due_in_days"]

        response = admin_client.post("/api/invoices", json=body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_negative_amount_is_400(self, admin_client, user):
        response = admin_client.post("/api/invoices", json=_create_body(user, amount="-5"))

        assert response.status_code == 400
        assert "amount" in response.json()["error"]["message"]

    def test_unauthenticated_is_401(self, anon_client, user):
        response = anon_client.post("/api/invoices", json=_create_body(user))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "NOT_AUTHENTICATED"


class TestReadInvoices:

    def test_user_lists_only_own(self, user_client, seeded_invoice, user, other_user):
        mine = seeded_invoice(user_id=user.id)
        seeded_invoice(user_id=other_user.id)

        response = user_client.get("/api/invoices")

        assert response.status_code == 200
        assert [i["id"] for i in response.json()["data"]] == [str(mine.id)]

    def test_admin_lists_all(self, admin_client, seeded_invoice, user, other_user):
        seeded_invoice(user_id=user.id)
        seeded_invoice(user_id=other_user.id)

        response = admin_client.get("/api/invoices")

        assert len(response.json()["data"]) == 2

    def test_limit_bounds(self, admin_client):
        assert admin_client.get("/api/invoices?limit=0").status_code == 400
        assert admin_client.get("/api/invoices?limit=501").status_code == 400

    def test_overdue_is_derived(self, user_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id, due_date=now_utc() - timedelta(days=1))

        data = user_client.get(f"/api/invoices/{invoice.id}").json()["data"]

        assert data["status"] == "pending"
        assert data["display_status"] == "overdue"

    def test_other_users_invoice_is_403(self, other_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id)

        response = other_client.get(f"/api/invoices/{invoice.id}")

        assert response.status_code == 403

    def test_missing_invoice_is_404(self, admin_client):
        response = admin_client.get("/api/invoices/00000000-0000-0000-0000-00000000dead")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_malformed_id_is_400(self, admin_client):
        assert admin_client.get("/api/invoices/not-a-uuid").status_code == 400


class TestUpdateInvoice:

    def test_admin_edits_fields(self, admin_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id)

        response = admin_client.put(
            f"/api/invoices/{invoice.id}",
            json={"description": "Renamed", "currency": "usd"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["description"] == "Renamed"
        assert data["currency"] == "USD"

    def test_overdue_status_rejected(self, admin_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id)

        response = admin_client.put(f"/api/invoices/{invoice.id}", json={"status": "overdue"})

        assert response.status_code == 400

    def test_mark_paid_provisions_service(
        self, admin_client, user_client, seeded_invoice, specs, user
    ):
        invoice = seeded_invoice(user_id=user.id, machine_specs=specs)

        response = admin_client.put(f"/api/invoices/{invoice.id}", json={"status": "paid"})

        data = response.json()["data"]
        assert data["status"] == "paid"
        assert data["payment_method"] == "manual"
        assert data["paid_at"] is not None

        services = user_client.get("/api/services").json()["data"]
        assert len(services) == 1
        assert services[0]["invoice"]["invoice_number"] == invoice.invoice_number

    def test_user_cannot_edit(self, user_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id)

        response = user_client.put(f"/api/invoices/{invoice.id}", json={"status": "paid"})

        assert response.status_code == 403


class TestDeleteInvoice:

    def test_admin_deletes(self, admin_client, seeded_invoice, invoice_store, user):
        invoice = seeded_invoice(user_id=user.id)

        response = admin_client.delete(f"/api/invoices/{invoice.id}")

        assert response.status_code == 200
        assert response.json()["data"] == {"id": str(invoice.id), "deleted": True}
        assert invoice.id not in invoice_store.rows

    def test_user_cannot_delete(self, user_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id)
        assert user_client.delete(f"/api/invoices/{invoice.id}").status_code == 403


# =============================================================================
# PAYMENT
# =============================================================================


class TestPay:

    def test_owner_gets_qr_payload(self, user_client, seeded_invoice, payment_client, user):
        invoice = seeded_invoice(user_id=user.id)

        response = user_client.post(f"/api/invoices/{invoice.id}/pay")

        assert response.status_code == 200
        assert response.json()["data"] == {
            "payment_id": "PAY-1",
            "qr_image_base64": "iVBORw0KGgo=",
            "amount": "299.00",
            "time_out": "900",
        }
        payment_client.create_payment.assert_called_once_with(
            invoice.amount, ref1=invoice.invoice_number
        )

    def test_admin_cannot_pay_for_user(self, admin_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id)
        assert admin_client.post(f"/api/invoices/{invoice.id}/pay").status_code == 403

    def test_paid_invoice_is_400(self, user_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id, status=InvoiceStatus.PAID)

        response = user_client.post(f"/api/invoices/{invoice.id}/pay")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"

    def test_gateway_failure_is_500(self, user_client, seeded_invoice, payment_client, user):
        payment_client.create_payment.side_effect = QRPaymentError("Merchant suspended")
        invoice = seeded_invoice(user_id=user.id)

        response = user_client.post(f"/api/invoices/{invoice.id}/pay")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "PAYMENT_GATEWAY_ERROR"
        assert error["message"] == "Merchant suspended"


class TestCheckPayment:

    def test_pending_returns_retry_hint(self, user_client, seeded_invoice, payment_client, user):
        invoice = seeded_invoice(user_id=user.id, payment_id="PAY-1")
        payment_client.get_payment_status.return_value = PaymentStatusReport(
            status=GatewayPaymentStatus.PENDING, id_pay="PAY-1"
        )

        data = user_client.post(f"/api/invoices/{invoice.id}/check-payment").json()["data"]

        assert data["status"] == "pending"
        assert data["retry_after_seconds"] == 5
        assert data["payment_status"]["status"] == "PENDING"
        assert data["invoice"]["status"] == "pending"

    def test_paid_updates_invoice_and_provisions(
        self, user_client, seeded_invoice, payment_client, specs, user
    ):
        invoice = seeded_invoice(user_id=user.id, payment_id="PAY-1", machine_specs=specs)
        payment_client.get_payment_status.return_value = PaymentStatusReport(
            status=GatewayPaymentStatus.PAID,
            id_pay="PAY-1",
            transaction_id="TX-9",
            paid_at="2024-03-15T10:30:00",
        )

        data = user_client.post(f"/api/invoices/{invoice.id}/check-payment").json()["data"]

        assert data["status"] == "paid"
        assert data["message"] == "Payment received"
        assert "retry_after_seconds" not in data
        assert data["invoice"]["transaction_id"] == "TX-9"
        assert data["invoice"]["payment_method"] == "promptpay"
        # Gateway local time (UTC+7)
        paid_at = datetime.fromisoformat(data["invoice"]["paid_at"].replace("Z", "+00:00"))
        assert paid_at == datetime(2024, 3, 15, 3, 30, tzinfo=timezone.utc)

        services = user_client.get("/api/services").json()["data"]
        assert len(services) == 1
        assert services[0]["expiry_date"].startswith("2024-04-15")

    def test_paid_with_blank_gateway_timestamps(self, user_client, seeded_invoice, payment_client, user):
        invoice = seeded_invoice(user_id=user.id, payment_id="PAY-1")
        payment_client.get_payment_status.return_value = PaymentStatusReport(
            status=GatewayPaymentStatus.PAID,
            id_pay="PAY-1",
            paid_at="",
            created_at="",
            expired_at="15/03/2024 10:45",
        )

        response = user_client.post(f"/api/invoices/{invoice.id}/check-payment")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "paid"
        assert data["invoice"]["status"] == "paid"
        assert data["invoice"]["paid_at"] is not None
        assert data["payment_status"]["expired_at"] == "15/03/2024 10:45"

    def test_timeout_asks_for_new_code(self, user_client, seeded_invoice, payment_client, user):
        invoice = seeded_invoice(user_id=user.id, payment_id="PAY-1")
        payment_client.get_payment_status.return_value = PaymentStatusReport(
            status=GatewayPaymentStatus.TIMEOUT, id_pay="PAY-1"
        )

        data = user_client.post(f"/api/invoices/{invoice.id}/check-payment").json()["data"]

        assert data["status"] == "timeout"
        assert "new code" in data["message"]

    def test_no_payment_in_progress_is_400(self, user_client, seeded_invoice, user):
        invoice = seeded_invoice(user_id=user.id)

        response = user_client.post(f"/api/invoices/{invoice.id}/check-payment")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_gateway_unreachable_is_500(self, user_client, seeded_invoice, payment_client, user):
        invoice = seeded_invoice(user_id=user.id, payment_id="PAY-1")
        payment_client.get_payment_status.side_effect = QRPaymentError("Connection failed")

        response = user_client.post(f"/api/invoices/{invoice.id}/check-payment")

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Could not check payment status"

    def test_request_id_echoed(self, user_client, seeded_invoice, payment_client, user):
        invoice = seeded_invoice(user_id=user.id, payment_id="PAY-1")
        payment_client.get_payment_status.return_value = PaymentStatusReport(
            status=GatewayPaymentStatus.PENDING, id_pay="PAY-1"
        )

        response = user_client.post(
            f"/api/invoices/{invoice.id}/check-payment",
            headers={"X-Request-ID": "poll-42"},
        )

        assert response.headers["X-Request-ID"] == "poll-42"
        assert response.json()["meta"]["request_id"] == "poll-42"


# =============================================================================
# HANDLERS
# =============================================================================


class TestHandlers:

    def test_blocking_routes_are_sync(self, app):
        """Handlers that reach Postgres or the gateway run in the threadpool."""
        routes = [
            r for r in app.routes
            if isinstance(r, APIRoute) and r.path.startswith(("/api/", "/auth/"))
        ]

        assert {r.path for r in routes} >= {
            "/api/invoices",
            "/api/invoices/{invoice_id}",
            "/api/invoices/{invoice_id}/pay",
            "/api/invoices/{invoice_id}/check-payment",
            "/api/services",
            "/auth/me",
            "/auth/logout",
        }
        assert [r.path for r in routes if inspect.iscoroutinefunction(r.endpoint)] == []
