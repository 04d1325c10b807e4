"""
Фоновая задача обработки запланированных уведомлений.
Запускает проход диспетчера каждые DISPATCH_LOOP_INTERVAL секунд.
Выключена по умолчанию: основной триггер: внешний cron через /dispatch/process.
"""
import asyncio
import logging
from typing import Callable

from sqlalchemy.orm import Session

from notifier.clients.gateway_client import get_gateway_client
from notifier.core.config import settings
from notifier.core.database import SessionLocal
from notifier.services.connection_monitor import get_connection_monitor
from notifier.services.dispatcher import Dispatcher, ProcessReport
from notifier.services.notification_store import NotificationStore

logger = logging.getLogger(__name__)


async def run_dispatch_pass(session_factory: Callable[[], Session] = SessionLocal) -> ProcessReport:
    """Одна итерация обработки в собственной сессии БД."""
    db = session_factory()
    try:
        dispatcher = Dispatcher(
            NotificationStore(db),
            get_gateway_client(),
            get_connection_monitor(),
        )
        report = await dispatcher.process_scheduled_notifications()
        await asyncio.to_thread(db.commit)
        return report
    except Exception:
        await asyncio.to_thread(db.rollback)
        raise
    finally:
        await asyncio.to_thread(db.close)


async def run_dispatch_loop(interval: int = None) -> None:
    """Запускает бесконечный цикл обработки уведомлений."""
    interval = interval or settings.DISPATCH_LOOP_INTERVAL
    logger.info("Dispatch loop started, interval=%ss", interval)
    while True:
        try:
            await run_dispatch_pass()
        except Exception as e:
            logger.error(f"Error processing notifications: {e}")
        await asyncio.sleep(interval)
