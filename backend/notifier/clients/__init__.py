"""
Клиенты внешних сервисов.
"""
from notifier.clients.gateway_client import (
    DeliveryResult,
    GatewayClient,
    GatewayStatus,
    get_gateway_client,
    close_gateway_client,
)

__all__ = [
    "DeliveryResult",
    "GatewayClient",
    "GatewayStatus",
    "get_gateway_client",
    "close_gateway_client",
]
