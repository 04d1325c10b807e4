"""
Хранилище журнала уведомлений.

Все изменения: атомарные записи одной строки. Смена статуса действиями
оператора и захват перед отправкой выполняются условным UPDATE по текущему
статусу, поэтому параллельный проход не может быть перезаписан.
Записи никогда не удаляются. Ошибки БД пробрасываются вызывающему.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from notifier.core.exceptions import NotFoundException
from notifier.core.utils import utcnow
from notifier.models.notification import NotificationRecord, NotificationStatus

logger = logging.getLogger(__name__)


@dataclass
class NotificationFilter:
    """Критерии выборки из журнала."""
    statuses: Optional[list[str]] = None
    notification_type: Optional[str] = None
    recipient_phone: Optional[str] = None
    scheduled_before: Optional[datetime] = None  # scheduled_for < value
    scheduled_until: Optional[datetime] = None   # scheduled_for <= value
    scheduled_from: Optional[datetime] = None    # scheduled_for >= value
    metadata: dict[str, Any] = field(default_factory=dict)
    newest_first: bool = False
    offset: int = 0
    limit: Optional[int] = None


class NotificationStore:
    """Доступ к журналу уведомлений."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock

    def create(
        self,
        notification_type: str,
        recipient_phone: str,
        title: str,
        message: str,
        metadata: Optional[dict] = None,
        priority: str = "normal",
        scheduled_for: Optional[datetime] = None,
    ) -> NotificationRecord:
        """Создаёт запись в статусе pending; id назначает БД."""
        now = self._clock()
        record = NotificationRecord(
            notification_type=notification_type,
            recipient_phone=recipient_phone,
            title=title,
            message=message,
            meta=dict(metadata or {}),
            priority=priority,
            status=NotificationStatus.PENDING.value,
            scheduled_for=scheduled_for or now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        self.db.flush()
        self.db.refresh(record)
        logger.info(
            "Notification created: id=%s type=%s scheduled_for=%s",
            record.id, record.notification_type, record.scheduled_for,
        )
        return record

    def get(self, notification_id: int) -> Optional[NotificationRecord]:
        return self.db.query(NotificationRecord).filter(NotificationRecord.id == notification_id).first()

    def get_or_raise(self, notification_id: int) -> NotificationRecord:
        record = self.get(notification_id)
        if record is None:
            raise NotFoundException("Уведомление", notification_id)
        return record

    def _filtered(self, criteria: NotificationFilter) -> Query:
        query = self.db.query(NotificationRecord)
        if criteria.statuses:
            query = query.filter(NotificationRecord.status.in_(criteria.statuses))
        if criteria.notification_type:
            query = query.filter(NotificationRecord.notification_type == criteria.notification_type)
        if criteria.recipient_phone:
            query = query.filter(NotificationRecord.recipient_phone == criteria.recipient_phone)
        if criteria.scheduled_before is not None:
            query = query.filter(NotificationRecord.scheduled_for < criteria.scheduled_before)
        if criteria.scheduled_until is not None:
            query = query.filter(NotificationRecord.scheduled_for <= criteria.scheduled_until)
        if criteria.scheduled_from is not None:
            query = query.filter(NotificationRecord.scheduled_for >= criteria.scheduled_from)
        for key, value in criteria.metadata.items():
            query = query.filter(NotificationRecord.meta[key].as_string() == str(value))
        return query

    def list_by_filter(self, criteria: NotificationFilter) -> list[NotificationRecord]:
        """Записи по критериям; по умолчанию по возрастанию scheduled_for."""
        query = self._filtered(criteria)
        if criteria.newest_first:
            query = query.order_by(NotificationRecord.created_at.desc(), NotificationRecord.id.desc())
        else:
            query = query.order_by(NotificationRecord.scheduled_for.asc(), NotificationRecord.id.asc())
        if criteria.offset:
            query = query.offset(criteria.offset)
        if criteria.limit is not None:
            query = query.limit(criteria.limit)
        return query.all()

    def count_by_filter(self, criteria: NotificationFilter) -> int:
        return self._filtered(criteria).with_entities(func.count(NotificationRecord.id)).scalar() or 0

    def list_due(self, now: datetime, limit: Optional[int] = None) -> list[NotificationRecord]:
        """pending-записи с scheduled_for <= now, по возрастанию времени."""
        return self.list_by_filter(
            NotificationFilter(
                statuses=[NotificationStatus.PENDING.value],
                scheduled_until=now,
                limit=limit,
            )
        )

    def list_overdue(self, now: datetime, criteria: Optional[NotificationFilter] = None) -> list[NotificationRecord]:
        """Просроченные: pending и scheduled_for < now. Вычисляемое условие, не статус."""
        criteria = replace(
            criteria or NotificationFilter(),
            statuses=[NotificationStatus.PENDING.value],
            scheduled_before=now,
        )
        return self.list_by_filter(criteria)

    def update_status(
        self,
        notification_id: int,
        new_status: str,
        extra_fields: Optional[dict] = None,
        metadata_updates: Optional[dict] = None,
    ) -> NotificationRecord:
        """
        Записывает новый статус. sent_at заполняется только вместе со статусом
        sent (и сохраняется при переходе sent -> read), для прочих статусов
        очищается. Проверку допустимости перехода делает диспетчер.
        """
        record = self.get_or_raise(notification_id)
        now = self._clock()
        extra_fields = dict(extra_fields or {})

        record.status = new_status
        if new_status == NotificationStatus.SENT.value:
            record.sent_at = extra_fields.pop("sent_at", None) or now
        elif new_status != NotificationStatus.READ.value:
            extra_fields.pop("sent_at", None)
            record.sent_at = None
        for name, value in extra_fields.items():
            setattr(record, name, value)
        if metadata_updates:
            # Новый dict, чтобы SQLAlchemy увидел изменение JSON-колонки
            record.meta = {**(record.meta or {}), **metadata_updates}
        record.updated_at = now
        self.db.flush()
        logger.debug("Notification %s -> %s", notification_id, new_status)
        return record

    def update_schedule(self, notification_id: int, new_time: datetime) -> NotificationRecord:
        record = self.get_or_raise(notification_id)
        record.scheduled_for = new_time
        record.updated_at = self._clock()
        self.db.flush()
        return record

    def transition(
        self,
        notification_id: int,
        expected_status: str,
        new_status: Optional[str] = None,
        values: Optional[dict] = None,
        metadata_updates: Optional[dict] = None,
    ) -> bool:
        """
        Условная запись одной строки: UPDATE ... WHERE id = ? AND status = expected_status.
        False, если статус уже сменился (например, запись захватил параллельный проход);
        в этом случае ничего не записывается.
        """
        record = self.get_or_raise(notification_id)
        self.db.refresh(record)
        changes = dict(values or {})
        if new_status is not None:
            changes["status"] = new_status
            if new_status not in (NotificationStatus.SENT.value, NotificationStatus.READ.value):
                changes["sent_at"] = None
        if metadata_updates:
            changes["meta"] = {**(record.meta or {}), **metadata_updates}
        changes["updated_at"] = self._clock()

        count = (
            self.db.query(NotificationRecord)
            .filter(
                NotificationRecord.id == notification_id,
                NotificationRecord.status == expected_status,
            )
            .update(
                {getattr(NotificationRecord, name): value for name, value in changes.items()},
                synchronize_session="fetch",
            )
        )
        self.db.flush()
        if count != 1:
            logger.info(
                "Notification %s is no longer %s, conditional write skipped",
                notification_id, expected_status,
            )
        return count == 1

    def claim(self, notification_id: int) -> bool:
        """
        Атомарный захват: pending -> sending одной условной записью.
        True, если запись захвачена этим вызовом.
        """
        count = (
            self.db.query(NotificationRecord)
            .filter(
                NotificationRecord.id == notification_id,
                NotificationRecord.status == NotificationStatus.PENDING.value,
            )
            .update(
                {"status": NotificationStatus.SENDING.value, "updated_at": self._clock()},
                synchronize_session="fetch",
            )
        )
        self.db.flush()
        return count == 1

    def release_stale_claims(self, older_than: datetime) -> int:
        """Возвращает в pending записи, застрявшие в sending дольше допустимого."""
        count = (
            self.db.query(NotificationRecord)
            .filter(
                NotificationRecord.status == NotificationStatus.SENDING.value,
                NotificationRecord.updated_at < older_than,
            )
            .update(
                {"status": NotificationStatus.PENDING.value, "updated_at": self._clock()},
                synchronize_session="fetch",
            )
        )
        self.db.flush()
        if count:
            logger.warning("Released %d stale claims", count)
        return count

    def stats(self, criteria: Optional[NotificationFilter], now: datetime) -> dict[str, int]:
        """Количество записей по статусам и число просроченных."""
        criteria = criteria or NotificationFilter()
        rows = (
            self._filtered(criteria)
            .with_entities(NotificationRecord.status, func.count(NotificationRecord.id))
            .group_by(NotificationRecord.status)
            .all()
        )
        counts = {status.value: 0 for status in NotificationStatus}
        for status, count in rows:
            counts[status] = count
        counts["total"] = sum(count for _, count in rows)
        counts["overdue"] = (
            self._filtered(criteria)
            .filter(
                NotificationRecord.status == NotificationStatus.PENDING.value,
                NotificationRecord.scheduled_for < now,
            )
            .with_entities(func.count(NotificationRecord.id))
            .scalar()
            or 0
        )
        return counts

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
