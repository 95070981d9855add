# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_valkey_url,
    get_qr_payment_config,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.qr_payment_client import (
    QRPaymentClient,
    QRPaymentError,
    GatewayPaymentStatus,
    PaymentIntent,
    PaymentStatusReport,
)
