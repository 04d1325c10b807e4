"""
Модель журнала уведомлений (ledger).
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Integer, String, Text, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from notifier.core.database import Base
from notifier.core.utils import utcnow


class NotificationType(str, Enum):
    """Типы уведомлений."""
    APPOINTMENT_REMINDER = "appointment_reminder"
    PAYMENT_DUE = "payment_due"
    DOCUMENT_READY = "document_ready"
    FOLLOWUP = "followup"
    WELCOME = "welcome"
    CUSTOM = "custom"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class NotificationStatus(str, Enum):
    """
    Статусы уведомления.

    pending -> sending (захват) -> sent | failed; pending -> cancelled;
    sent -> read. SENDING: промежуточный статус на время попытки доставки.
    """
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"
    READ = "read"


class NotificationRecord(Base):
    """Запись журнала уведомлений."""
    __tablename__ = "system_notifications"
    __table_args__ = (
        Index("ix_system_notifications_status_scheduled", "status", "scheduled_for"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # Атрибут `metadata` занят DeclarativeBase, колонка называется metadata
    meta: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default=NotificationPriority.NORMAL.value)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=NotificationStatus.PENDING.value)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<NotificationRecord id={self.id} type={self.notification_type} status={self.status}>"
