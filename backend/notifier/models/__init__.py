"""
Модели SQLAlchemy: импортируем все для корректной регистрации в metadata.
"""
from notifier.models.notification import (  # noqa: F401
    NotificationRecord,
    NotificationType,
    NotificationPriority,
    NotificationStatus,
)
