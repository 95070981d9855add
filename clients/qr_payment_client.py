"""
QR payment gateway client.

Creates PromptPay-style QR payment intents and polls their status. The
gateway is authoritative for intent expiry; this client performs no retries
and leaves polling cadence to the caller.
"""

import json
import logging
from decimal import Decimal
from enum import Enum

import requests
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class QRPaymentError(Exception):
    """Raised when the QR payment gateway is unreachable or rejects a request."""


class GatewayPaymentStatus(str, Enum):
    """Payment intent status as reported by the gateway."""

    PENDING = "PENDING"
    PAID = "PAID"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"


class PaymentIntent(BaseModel):
    """A freshly created payment intent, ready to render as a QR code."""

    model_config = {"coerce_numbers_to_str": True}

    id_pay: str
    qr_image_base64: str | None = None
    amount: str | None = None
    time_out: str | None = None


class PaymentStatusReport(BaseModel):
    """Current state of a payment intent."""

    model_config = {"coerce_numbers_to_str": True}

    status: GatewayPaymentStatus
    id_pay: str
    amount: str | None = None
    ref1: str | None = None
    transaction_id: str | None = None
    paid_at: str | None = None
    bank_ref: str | None = None
    created_at: str | None = None
    expired_at: str | None = None


class QRPaymentClient:
    """HTTP client for the QR payment gateway."""

    def __init__(self, api_url: str, timeout_seconds: int = 10):
        """
        Args:
            api_url: Gateway base URL (e.g. https://pay.example.com)
            timeout_seconds: Per-request timeout

        Raises:
            ValueError: If api_url is empty
        """
        if not api_url:
            raise ValueError("api_url is required")

        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.api_url}{path}"

        try:
            response = requests.request(method, url, timeout=self.timeout_seconds, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"QR payment gateway connection failed: {e}")
            raise QRPaymentError(f"Connection failed: {e}")

        if not response.ok:
            logger.error(f"QR payment gateway HTTP {response.status_code} for {path}")
            raise QRPaymentError(f"HTTP error: status {response.status_code}")

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            logger.error(f"QR payment gateway returned invalid JSON: {response.text}")
            raise QRPaymentError("Invalid response from gateway")

        if not isinstance(data, dict):
            raise QRPaymentError("Invalid response from gateway")

        return data

    def create_payment(self, amount: Decimal, ref1: str) -> PaymentIntent:
        """
        Create a payment intent.

        Args:
            amount: Amount to charge
            ref1: Reference shown on the gateway ledger (the invoice number)

        Returns:
            PaymentIntent with the QR image payload

        Raises:
            QRPaymentError: On connection failure or gateway rejection
        """
        data = self._request(
            "POST",
            "/create_payment",
            json={"amount": float(amount), "ref1": ref1},
        )

        if data.get("status") != 1 or not data.get("id_pay"):
            message = data.get("message") or "Could not create QR payment"
            logger.error(f"QR payment creation rejected for {ref1}: {message}")
            raise QRPaymentError(message)

        intent = PaymentIntent.model_validate(data)
        logger.info(f"QR payment {intent.id_pay} created for {ref1}")
        return intent

    def get_payment_status(self, id_pay: str) -> PaymentStatusReport:
        """
        Poll the status of a payment intent.

        Raises:
            QRPaymentError: On connection failure or malformed response
        """
        data = self._request("GET", "/api/payment_status", params={"id_pay": id_pay})
        data.setdefault("id_pay", id_pay)

        try:
            return PaymentStatusReport.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected payment status document for {id_pay}: {e}")
            raise QRPaymentError("Invalid response from gateway")

