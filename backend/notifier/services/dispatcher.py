"""
Диспетчер уведомлений: создание записей журнала, планирование,
доставка через шлюз и действия оператора.

Жизненный цикл записи:
    pending -> sending -> sent | failed
    pending -> cancelled
    pending -> pending     (перенос времени)
    sent    -> read        (подтверждение из интерфейса)
    failed  -> pending     (только явный retry оператора)

Перед каждой попыткой доставки запись захватывается атомарным переходом
pending -> sending, поэтому два одновременных прохода не отправят одну
запись дважды. Действия оператора тоже пишут условно по текущему статусу:
запись, уже захваченную проходом, отменить или перенести нельзя.

Сессия SQLAlchemy синхронная: из async-методов работа с хранилищем
выполняется в потоке (asyncio.to_thread), event loop занят только HTTP.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence

from notifier.clients.gateway_client import DeliveryResult, GatewayClient, GatewayStatus
from notifier.core.config import settings
from notifier.core.exceptions import InvalidTransitionError, ValidationException
from notifier.core.phone import is_valid_phone, normalize_phone
from notifier.core.templates import TemplateCatalog, get_template_catalog, missing_variables, render_template
from notifier.core.utils import BUENOS_AIRES_TZ, to_naive_utc, utcnow
from notifier.models.notification import (
    NotificationPriority,
    NotificationRecord,
    NotificationStatus,
    NotificationType,
)
from notifier.services.connection_monitor import ConnectionMonitor
from notifier.services.notification_store import NotificationFilter, NotificationStore

logger = logging.getLogger(__name__)

# Записи в sending дольше этого срока считаются брошенными (процесс упал во время отправки)
CLAIM_TIMEOUT = timedelta(minutes=15)


@dataclass
class DispatchOutcome:
    """Итог одной попытки доставки записи."""
    notification_id: int
    status: str
    result: Optional[DeliveryResult] = None
    skipped: bool = False
    record: Optional[NotificationRecord] = None


@dataclass
class BulkReport:
    """Итог массовой отправки. results выровнены по индексам входа."""
    total: int
    sent: int
    failed: int
    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class ProcessReport:
    """Итог прохода обработки запланированных уведомлений."""
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    gateway_connected: bool = True
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.gateway_connected


class Dispatcher:
    """Оркестратор доставки уведомлений."""

    def __init__(
        self,
        store: NotificationStore,
        gateway: GatewayClient,
        monitor: ConnectionMonitor,
        catalog: Optional[TemplateCatalog] = None,
        clock: Callable[[], datetime] = utcnow,
        remote_scheduling: Optional[bool] = None,
        batch_size: Optional[int] = None,
        send_interval: Optional[float] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.monitor = monitor
        self.catalog = catalog or get_template_catalog()
        self._clock = clock
        self.remote_scheduling = (
            settings.GATEWAY_REMOTE_SCHEDULING if remote_scheduling is None else remote_scheduling
        )
        self.batch_size = batch_size or settings.DISPATCH_BATCH_SIZE
        self.send_interval = settings.DISPATCH_SEND_INTERVAL if send_interval is None else send_interval

    def _commit(self, record: NotificationRecord) -> NotificationRecord:
        """Фиксирует транзакцию и перечитывает запись, чтобы её поля были доступны вне потока БД."""
        self.store.commit()
        self.store.db.refresh(record)
        return record

    def _transition_or_raise(
        self,
        record: NotificationRecord,
        expected: NotificationStatus,
        action: str,
        **changes: Any,
    ) -> NotificationRecord:
        """Условный переход из expected; InvalidTransitionError, если статус уже другой."""
        if not self.store.transition(record.id, expected.value, **changes):
            self.store.rollback()
            self.store.db.refresh(record)
            raise InvalidTransitionError(record.id, record.status, action)
        return self._commit(record)

    # ===== Создание =====

    def _validate_type(self, notification_type: str) -> str:
        try:
            value = NotificationType(notification_type).value
        except ValueError:
            raise ValidationException(f"Неизвестный тип уведомления: {notification_type}")
        if value not in self.catalog:
            raise ValidationException(f"Нет шаблона для типа уведомления: {value}")
        return value

    def _validate_phone(self, recipient_phone: str) -> str:
        if not recipient_phone or not is_valid_phone(recipient_phone):
            raise ValidationException(f"Некорректный номер телефона: {recipient_phone!r}")
        return normalize_phone(recipient_phone)

    def _create_rendered(
        self,
        recipient_phone: str,
        notification_type: str,
        variables: dict[str, Any],
        scheduled_for: datetime,
        metadata: Optional[dict] = None,
        priority: str = NotificationPriority.NORMAL.value,
    ) -> NotificationRecord:
        """Проверяет входные данные и сохраняет запись с уже подставленным текстом."""
        notification_type = self._validate_type(notification_type)
        phone = self._validate_phone(recipient_phone)
        try:
            priority = NotificationPriority(priority).value
        except ValueError:
            raise ValidationException(f"Неизвестный приоритет: {priority}")

        template = self.catalog.get(notification_type)
        if notification_type == NotificationType.CUSTOM.value and not variables.get("message"):
            raise ValidationException("Для custom-уведомления обязательна переменная 'message'")

        message = render_template(template.body, variables)
        meta = dict(metadata or {})
        meta["template_variables"] = {key: "" if value is None else str(value) for key, value in variables.items()}
        missing = missing_variables(template.body, variables)
        if missing:
            meta["missing_variables"] = missing
            logger.warning("Template %s rendered without variables: %s", notification_type, missing)

        record = self.store.create(
            notification_type=notification_type,
            recipient_phone=phone,
            title=render_template(template.title, variables),
            message=message,
            metadata=meta,
            priority=priority,
            scheduled_for=scheduled_for,
        )
        return self._commit(record)

    async def create_quick_notification(
        self,
        recipient_phone: str,
        notification_type: str,
        variables: Optional[dict[str, Any]] = None,
        delay_minutes: int = 0,
        metadata: Optional[dict] = None,
        priority: str = NotificationPriority.NORMAL.value,
    ) -> NotificationRecord:
        """
        Единая точка создания уведомления по шаблону.
        delay_minutes == 0: немедленная отправка, иначе планирование.
        """
        if delay_minutes < 0:
            raise ValidationException("delay_minutes не может быть отрицательным")
        now = self._clock()
        record = await asyncio.to_thread(
            self._create_rendered,
            recipient_phone,
            notification_type,
            dict(variables or {}),
            scheduled_for=now + timedelta(minutes=delay_minutes),
            metadata=metadata,
            priority=priority,
        )

        if delay_minutes == 0:
            await self.send_message(record)
        else:
            await self.schedule_reminder(record, delay_minutes)
        return record

    async def schedule_appointment_reminder(
        self,
        appointment_id: str,
        patient_id: str,
        psychologist_id: str,
        appointment_at: datetime,
        patient_name: str,
        patient_phone: str,
        hours_before: int = 24,
    ) -> NotificationRecord:
        """Напоминание о приёме за hours_before часов. Прошедшее время: отправка ближайшим проходом."""
        appointment_at = to_naive_utc(appointment_at)
        now = self._clock()
        reminder_at = max(appointment_at - timedelta(hours=hours_before), now)

        local = appointment_at.replace(tzinfo=timezone.utc).astimezone(BUENOS_AIRES_TZ)
        variables = {
            "patient_name": patient_name,
            "date": local.strftime("%d/%m/%Y"),
            "time": local.strftime("%H:%M"),
        }
        metadata = {
            "appointment_id": str(appointment_id),
            "patient_id": str(patient_id),
            "psychologist_id": str(psychologist_id),
            "appointment_date": appointment_at.isoformat(),
            "hours_before": hours_before,
        }
        record = await asyncio.to_thread(
            self._create_rendered,
            patient_phone,
            NotificationType.APPOINTMENT_REMINDER.value,
            variables,
            scheduled_for=reminder_at,
            metadata=metadata,
        )
        logger.info(
            "Appointment reminder %s scheduled for %s (appointment %s)",
            record.id, reminder_at, appointment_id,
        )
        return record

    # ===== Доставка =====

    def _claim(self, record: NotificationRecord) -> bool:
        claimed = self.store.claim(record.id)
        self._commit(record)
        return claimed

    def _record_result(self, record: NotificationRecord, result: DeliveryResult, error_reason: str) -> None:
        if result.success:
            self.store.update_status(
                record.id,
                NotificationStatus.SENT.value,
                extra_fields={"sent_at": self._clock()},
                metadata_updates={"provider_message_id": result.provider_message_id},
            )
            logger.info("Notification %s sent to %s", record.id, record.recipient_phone)
        else:
            self._mark_failed(record, error_reason, result.error_message)
        self._commit(record)

    def _record_remote_delivery(self, record: NotificationRecord) -> None:
        # Доставку выполняет сам шлюз по своему расписанию
        self.store.update_status(
            record.id,
            NotificationStatus.SENT.value,
            extra_fields={"sent_at": self._clock()},
            metadata_updates={"delivered_by": "gateway_schedule"},
        )
        self._commit(record)

    async def send_message(self, record: NotificationRecord) -> DispatchOutcome:
        """
        Одна попытка доставки записи. Запись сначала захватывается
        (pending -> sending); если захват не удался, запись не трогается.
        Ошибки шлюза не выбрасываются, а фиксируются в статусе и metadata.
        """
        if not await asyncio.to_thread(self._claim, record):
            logger.info("Notification %s not claimed (status=%s), skipping", record.id, record.status)
            return DispatchOutcome(record.id, record.status, skipped=True, record=record)

        if (record.meta or {}).get("remote_scheduled"):
            await asyncio.to_thread(self._record_remote_delivery, record)
            return DispatchOutcome(record.id, record.status, DeliveryResult(success=True), record=record)

        error_reason = "api_error"
        try:
            result = await self.gateway.send_one(record.recipient_phone, record.message)
        except Exception as e:
            logger.exception("Unexpected error sending notification %s", record.id)
            result = DeliveryResult.failure(f"{type(e).__name__}: {e}")
            error_reason = "processing_exception"

        await asyncio.to_thread(self._record_result, record, result, error_reason)
        return DispatchOutcome(record.id, record.status, result, record=record)

    def _mark_failed(self, record: NotificationRecord, error_reason: str, error_message: Optional[str]) -> None:
        retry_count = int((record.meta or {}).get("retry_count", 0)) + 1
        self.store.update_status(
            record.id,
            NotificationStatus.FAILED.value,
            metadata_updates={
                "error_reason": error_reason,
                "error_message": error_message,
                "retry_count": retry_count,
                "failed_at": self._clock().isoformat(),
            },
        )
        logger.error("Notification %s failed (%s): %s", record.id, error_reason, error_message)

    async def send_bulk_messages(self, items: Sequence[tuple[str, str]]) -> BulkReport:
        """
        Массовая отправка без записей в журнал. Результаты выровнены по индексам;
        некорректные номера отклоняются на своём индексе без обращения к шлюзу.
        """
        results: list[Optional[DeliveryResult]] = [None] * len(items)
        outbound: list[tuple[str, str]] = []
        positions: list[int] = []
        for index, (phone, message) in enumerate(items):
            if not is_valid_phone(phone):
                results[index] = DeliveryResult.failure(f"invalid phone number: {phone}")
                continue
            outbound.append((normalize_phone(phone), message))
            positions.append(index)

        if outbound:
            status = await self.monitor.get_status()
            if status.connected:
                for index, result in zip(positions, await self.gateway.send_bulk(outbound)):
                    results[index] = result
            else:
                error = f"gateway disconnected: {status.error}" if status.error else "gateway disconnected"
                for index in positions:
                    results[index] = DeliveryResult.failure(error)

        sent = sum(1 for result in results if result.success)
        report = BulkReport(total=len(items), sent=sent, failed=len(items) - sent, results=results)
        logger.info("Bulk send finished: %d/%d delivered", report.sent, report.total)
        return report

    def _store_remote_outcome(self, record: NotificationRecord, updates: dict) -> None:
        if not self.store.transition(record.id, NotificationStatus.PENDING.value, metadata_updates=updates):
            logger.warning("Notification %s left pending before remote outcome was stored", record.id)
        self._commit(record)

    async def schedule_reminder(self, record: NotificationRecord, delay_minutes: int) -> NotificationRecord:
        """
        Переносит запись на now + delay_minutes в статусе pending. При включённом
        удалённом планировании также передаёт сообщение шлюзу.
        """
        scheduled_for = self._clock() + timedelta(minutes=delay_minutes)
        await asyncio.to_thread(
            self._transition_or_raise,
            record,
            NotificationStatus.PENDING,
            "schedule",
            values={"scheduled_for": scheduled_for},
        )

        if self.remote_scheduling:
            result = await self.gateway.schedule_remote(record.recipient_phone, record.message, delay_minutes)
            updates = {"remote_scheduled": result.success}
            if result.success:
                updates["remote_message_id"] = result.provider_message_id
            else:
                updates["remote_schedule_error"] = result.error_message
                logger.warning(
                    "Remote scheduling failed for %s, falling back to local: %s",
                    record.id, result.error_message,
                )
            await asyncio.to_thread(self._store_remote_outcome, record, updates)
        logger.info("Notification %s scheduled for %s", record.id, scheduled_for)
        return record

    def _begin_pass(self, now: datetime) -> list[NotificationRecord]:
        self.store.release_stale_claims(now - CLAIM_TIMEOUT)
        self.store.commit()
        return self.store.list_due(now, limit=self.batch_size)

    async def process_scheduled_notifications(self) -> ProcessReport:
        """
        Проход обработки: все pending-записи с scheduled_for <= now по возрастанию
        времени. Ошибка одной записи не прерывает обработку остальных.
        """
        now = self._clock()
        status = await self.monitor.get_status()
        if not status.connected:
            logger.warning("Gateway disconnected, skipping dispatch pass: %s", status.error)
            return ProcessReport(
                gateway_connected=False,
                message=f"Gateway not connected: {status.error or 'unknown'}",
            )

        due = await asyncio.to_thread(self._begin_pass, now)
        report = ProcessReport(total=len(due))
        for index, (notification_id, record) in enumerate([(r.id, r) for r in due]):
            try:
                outcome = await self.send_message(record)
                if outcome.skipped:
                    report.skipped += 1
                elif outcome.status == NotificationStatus.SENT.value:
                    report.processed += 1
                else:
                    report.failed += 1
            except Exception as e:
                logger.exception("Error processing notification %s", notification_id)
                report.failed += 1
                await asyncio.to_thread(self._fail_after_exception, record, e)

            if self.send_interval and index < len(due) - 1:
                await asyncio.sleep(self.send_interval)

        logger.info(
            "Dispatch pass complete: %d sent, %d failed, %d skipped of %d",
            report.processed, report.failed, report.skipped, report.total,
        )
        return report

    def _fail_after_exception(self, record: NotificationRecord, exc: Exception) -> None:
        self.store.rollback()
        try:
            self.store.db.refresh(record)
            if record.status in (NotificationStatus.PENDING.value, NotificationStatus.SENDING.value):
                self._mark_failed(record, "processing_exception", f"{type(exc).__name__}: {exc}")
                self.store.commit()
        except Exception:
            logger.exception("Could not record failure for notification %s", record.id)
            self.store.rollback()

    # ===== Действия оператора =====

    @staticmethod
    def _superseded_remote(record: NotificationRecord) -> Optional[dict]:
        if (record.meta or {}).get("remote_scheduled"):
            logger.warning(
                "Notification %s was scheduled on the gateway; the gateway copy cannot be moved",
                record.id,
            )
            return {"remote_scheduled": False, "remote_schedule_superseded": True}
        return None

    def reschedule(self, notification_id: int, new_time: datetime) -> NotificationRecord:
        """Перенос времени отправки. Только для pending."""
        record = self.store.get_or_raise(notification_id)
        self._transition_or_raise(
            record,
            NotificationStatus.PENDING,
            "reschedule",
            values={"scheduled_for": to_naive_utc(new_time)},
            metadata_updates=self._superseded_remote(record),
        )
        logger.info("Notification %s rescheduled to %s", notification_id, record.scheduled_for)
        return record

    def _prepare_send_now(self, notification_id: int) -> NotificationRecord:
        record = self.store.get_or_raise(notification_id)
        return self._transition_or_raise(
            record,
            NotificationStatus.PENDING,
            "send_now",
            values={"scheduled_for": self._clock()},
            metadata_updates=self._superseded_remote(record),
        )

    async def send_now(self, notification_id: int) -> DispatchOutcome:
        """Немедленная попытка отправки pending-записи."""
        record = await asyncio.to_thread(self._prepare_send_now, notification_id)
        return await self.send_message(record)

    def cancel(self, notification_id: int) -> NotificationRecord:
        """Отмена. Только для pending; выполняющуюся попытку отменить нельзя."""
        record = self.store.get_or_raise(notification_id)
        self._transition_or_raise(
            record,
            NotificationStatus.PENDING,
            "cancel",
            new_status=NotificationStatus.CANCELLED.value,
            metadata_updates={"cancelled_at": self._clock().isoformat()},
        )
        logger.info("Notification %s cancelled", notification_id)
        return record

    def retry(self, notification_id: int) -> NotificationRecord:
        """Явный повтор: failed -> pending с отправкой ближайшим проходом."""
        record = self.store.get_or_raise(notification_id)
        now = self._clock()
        self._transition_or_raise(
            record,
            NotificationStatus.FAILED,
            "retry",
            new_status=NotificationStatus.PENDING.value,
            values={"scheduled_for": now},
            metadata_updates={"retried_at": now.isoformat()},
        )
        logger.info("Notification %s returned to pending for retry", notification_id)
        return record

    def mark_read(self, notification_id: int) -> NotificationRecord:
        """Подтверждение прочтения из интерфейса: sent -> read. Повторный вызов ничего не меняет."""
        record = self.store.get_or_raise(notification_id)
        self.store.db.refresh(record)
        if record.status == NotificationStatus.READ.value:
            return record
        return self._transition_or_raise(
            record,
            NotificationStatus.SENT,
            "mark_read",
            new_status=NotificationStatus.READ.value,
        )

    async def reconnect_all(self, attempts: int = 5, wait_seconds: float = 2.0) -> tuple[GatewayStatus, Optional[ProcessReport]]:
        """
        Явное переподключение: опрос шлюза до connected и, если удалось,
        немедленный проход обработки накопившихся уведомлений.
        """
        status = await self.monitor.wait_until_connected(attempts=attempts, wait_seconds=wait_seconds)
        if not status.connected:
            return status, None
        return status, await self.process_scheduled_notifications()

    # ===== Чтение =====

    def list_overdue(self, criteria: Optional[NotificationFilter] = None) -> list[NotificationRecord]:
        return self.store.list_overdue(self._clock(), criteria)

    def stats(self, criteria: Optional[NotificationFilter] = None) -> dict[str, int]:
        return self.store.stats(criteria, self._clock())
