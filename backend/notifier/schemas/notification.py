"""
Pydantic схемы для уведомлений.
"""
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field

from notifier.core.phone import format_phone_display
from notifier.models.notification import NotificationPriority, NotificationType

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Страница результатов выборки."""
    items: list[T]
    total: int
    skip: int = 0
    limit: int = 100


class NotificationResponse(BaseModel):
    """Схема ответа с данными уведомления."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    notification_type: str
    recipient_phone: str
    title: str
    message: str
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
    )
    priority: str
    status: str
    scheduled_for: datetime
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def recipient_display(self) -> str:
        """Номер в читаемом виде для интерфейса."""
        return format_phone_display(self.recipient_phone)


class NotificationListResponse(PaginatedResponse[NotificationResponse]):
    """Схема списка уведомлений."""
    pass


class QuickNotificationCreate(BaseModel):
    """Создание уведомления по шаблону типа."""
    recipient_phone: str = Field(..., min_length=1, max_length=64)
    notification_type: NotificationType
    variables: dict[str, Any] = Field(default_factory=dict)
    delay_minutes: int = Field(0, ge=0, le=60 * 24 * 365)
    metadata: dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL


class AppointmentReminderCreate(BaseModel):
    """Напоминание о приёме за N часов до начала."""
    appointment_id: str
    patient_id: str
    psychologist_id: str
    appointment_at: datetime
    patient_name: str
    patient_phone: str = Field(..., min_length=1, max_length=64)
    hours_before: int = Field(24, ge=0, le=24 * 30)


class RescheduleRequest(BaseModel):
    scheduled_for: datetime


class BulkMessageItem(BaseModel):
    phone_number: str = Field(..., min_length=1, max_length=64)
    message: str = Field(..., min_length=1)


class BulkSendRequest(BaseModel):
    messages: list[BulkMessageItem] = Field(..., min_length=1)


class DeliveryResultResponse(BaseModel):
    success: bool
    provider_message_id: Optional[str] = None
    error_message: Optional[str] = None


class BulkSendResponse(BaseModel):
    """Итог массовой отправки: счётчики и результаты по индексам входа."""
    success: bool
    total: int
    sent: int
    failed: int
    results: list[DeliveryResultResponse]


class ProcessResponse(BaseModel):
    """Итог прохода обработки запланированных уведомлений."""
    success: bool
    processed: int
    failed: int
    skipped: int = 0
    total: int = 0
    gateway_connected: bool = True
    message: Optional[str] = None


class NotificationStatsResponse(BaseModel):
    total: int
    pending: int
    sending: int
    sent: int
    failed: int
    cancelled: int
    read: int
    overdue: int
