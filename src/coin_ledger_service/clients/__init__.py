"""HTTP clients for external collaborators."""

from coin_ledger_service.clients.identity_client import IdentityClient
from coin_ledger_service.clients.payment_gateway_client import PaymentGatewayClient

__all__ = ["IdentityClient", "PaymentGatewayClient"]
