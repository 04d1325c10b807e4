"""
API endpoints для уведомлений.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from notifier.api.dependencies import get_dispatcher
from notifier.core.security import verify_api_key
from notifier.core.utils import to_naive_utc
from notifier.models.notification import NotificationStatus, NotificationType
from notifier.schemas.notification import (
    AppointmentReminderCreate,
    BulkSendRequest,
    BulkSendResponse,
    DeliveryResultResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationStatsResponse,
    QuickNotificationCreate,
    RescheduleRequest,
)
from notifier.services.dispatcher import Dispatcher
from notifier.services.notification_store import NotificationFilter

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
    dependencies=[Depends(verify_api_key)],
)


def _filter_params(
    status_: Optional[list[NotificationStatus]] = Query(None, alias="status"),
    notification_type: Optional[NotificationType] = Query(None),
    psychologist_id: Optional[str] = Query(None),
    patient_id: Optional[str] = Query(None),
    scheduled_from: Optional[datetime] = Query(None),
    scheduled_until: Optional[datetime] = Query(None),
) -> NotificationFilter:
    metadata = {}
    if psychologist_id:
        metadata["psychologist_id"] = psychologist_id
    if patient_id:
        metadata["patient_id"] = patient_id
    return NotificationFilter(
        statuses=[s.value for s in status_] if status_ else None,
        notification_type=notification_type.value if notification_type else None,
        scheduled_from=to_naive_utc(scheduled_from) if scheduled_from else None,
        scheduled_until=to_naive_utc(scheduled_until) if scheduled_until else None,
        metadata=metadata,
    )


@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def create_notification(
    data: QuickNotificationCreate,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Создать уведомление по шаблону: отправить сразу или запланировать."""
    record = await dispatcher.create_quick_notification(
        recipient_phone=data.recipient_phone,
        notification_type=data.notification_type.value,
        variables=data.variables,
        delay_minutes=data.delay_minutes,
        metadata=data.metadata,
        priority=data.priority.value,
    )
    return NotificationResponse.model_validate(record)


@router.post(
    "/appointment-reminder",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment_reminder(
    data: AppointmentReminderCreate,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Запланировать напоминание о приёме."""
    record = await dispatcher.schedule_appointment_reminder(
        appointment_id=data.appointment_id,
        patient_id=data.patient_id,
        psychologist_id=data.psychologist_id,
        appointment_at=data.appointment_at,
        patient_name=data.patient_name,
        patient_phone=data.patient_phone,
        hours_before=data.hours_before,
    )
    return NotificationResponse.model_validate(record)


@router.post("/bulk", response_model=BulkSendResponse)
async def send_bulk(
    data: BulkSendRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Массовая отправка без записей в журнал."""
    report = await dispatcher.send_bulk_messages(
        [(item.phone_number, item.message) for item in data.messages]
    )
    return BulkSendResponse(
        success=report.success,
        total=report.total,
        sent=report.sent,
        failed=report.failed,
        results=[
            DeliveryResultResponse(
                success=r.success,
                provider_message_id=r.provider_message_id,
                error_message=r.error_message,
            )
            for r in report.results
        ],
    )


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    criteria: NotificationFilter = Depends(_filter_params),
    newest_first: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Список уведомлений с фильтрами."""
    total = dispatcher.store.count_by_filter(criteria)
    criteria.newest_first = newest_first
    criteria.offset = skip
    criteria.limit = limit
    items = dispatcher.store.list_by_filter(criteria)
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/overdue", response_model=NotificationListResponse)
def list_overdue(
    criteria: NotificationFilter = Depends(_filter_params),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Просроченные уведомления: pending, время отправки прошло."""
    items = dispatcher.list_overdue(criteria)
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=len(items),
        limit=max(len(items), 1),
    )


@router.get("/stats", response_model=NotificationStatsResponse)
def get_stats(
    criteria: NotificationFilter = Depends(_filter_params),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Счётчики по статусам и число просроченных."""
    return NotificationStatsResponse(**dispatcher.stats(criteria))


@router.get("/{notification_id}", response_model=NotificationResponse)
def get_notification(notification_id: int, dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Получить уведомление по ID."""
    return NotificationResponse.model_validate(dispatcher.store.get_or_raise(notification_id))


@router.post("/{notification_id}/reschedule", response_model=NotificationResponse)
def reschedule_notification(
    notification_id: int,
    data: RescheduleRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Перенести время отправки (только pending)."""
    record = dispatcher.reschedule(notification_id, data.scheduled_for)
    return NotificationResponse.model_validate(record)


@router.post("/{notification_id}/send-now", response_model=NotificationResponse)
async def send_notification_now(notification_id: int, dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Отправить pending-уведомление немедленно."""
    outcome = await dispatcher.send_now(notification_id)
    return NotificationResponse.model_validate(outcome.record)


@router.post("/{notification_id}/cancel", response_model=NotificationResponse)
def cancel_notification(notification_id: int, dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Отменить pending-уведомление."""
    return NotificationResponse.model_validate(dispatcher.cancel(notification_id))


@router.post("/{notification_id}/retry", response_model=NotificationResponse)
def retry_notification(notification_id: int, dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Вернуть failed-уведомление в очередь."""
    return NotificationResponse.model_validate(dispatcher.retry(notification_id))


@router.post("/{notification_id}/mark-read", response_model=NotificationResponse)
def mark_notification_read(notification_id: int, dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Отметить отправленное уведомление как прочитанное."""
    return NotificationResponse.model_validate(dispatcher.mark_read(notification_id))
