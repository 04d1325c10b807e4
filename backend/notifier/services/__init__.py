"""
Сервисный слой: журнал уведомлений, монитор шлюза и диспетчер доставки.
"""
from notifier.services.notification_store import NotificationFilter, NotificationStore
from notifier.services.connection_monitor import ConnectionMonitor
from notifier.services.dispatcher import Dispatcher

__all__ = [
    "NotificationFilter",
    "NotificationStore",
    "ConnectionMonitor",
    "Dispatcher",
]
