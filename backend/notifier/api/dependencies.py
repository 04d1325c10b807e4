"""
Зависимости FastAPI для сервисного слоя.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from notifier.clients.gateway_client import GatewayClient, get_gateway_client
from notifier.core.database import get_db
from notifier.services.connection_monitor import ConnectionMonitor, get_connection_monitor
from notifier.services.dispatcher import Dispatcher
from notifier.services.notification_store import NotificationStore


def get_gateway() -> GatewayClient:
    return get_gateway_client()


def get_monitor() -> ConnectionMonitor:
    return get_connection_monitor()


def get_dispatcher(
    db: Session = Depends(get_db),
    gateway: GatewayClient = Depends(get_gateway),
    monitor: ConnectionMonitor = Depends(get_monitor),
) -> Dispatcher:
    return Dispatcher(NotificationStore(db), gateway, monitor)
