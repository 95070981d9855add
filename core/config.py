"""Billing configuration."""

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Invoice lifecycle and provisioning settings.

    Defaults match the reseller's PromptPay deployment (Thai baht, one-month
    machine grants, clients polling every five seconds).
    """

    default_currency: str = Field(
        default="THB",
        description="Currency applied when an invoice is created without one",
        min_length=3,
        max_length=3,
    )
    default_machine_type: str = Field(
        default="cloud-vm",
        description="Machine type for services whose invoice has no machine_info.type",
        min_length=1,
    )
    service_period_months: int = Field(
        default=1,
        description="Calendar months a provisioned machine service stays valid",
        ge=1,
        le=36,
    )
    payment_poll_interval_seconds: int = Field(
        default=5,
        description="Suggested delay between check-payment calls, returned to clients",
        ge=1,
        le=60,
    )
    gateway_timezone: str = Field(
        default="Asia/Bangkok",
        description="Timezone for gateway timestamps reported without an offset",
    )
