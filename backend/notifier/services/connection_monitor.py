"""
Монитор соединения со шлюзом сообщений.

Хранит последний снимок состояния с отметкой времени и обновляет его по
запросу, если снимок старше допустимого возраста. Фонового опроса нет.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from notifier.clients.gateway_client import GatewayClient, GatewayStatus, get_gateway_client
from notifier.core.config import settings
from notifier.core.utils import utcnow

logger = logging.getLogger(__name__)


class ConnectionMonitor:
    """Кэширующий монитор состояния шлюза."""

    def __init__(self, client: GatewayClient, clock: Callable[[], datetime] = utcnow):
        self._client = client
        self._clock = clock
        self._status: Optional[GatewayStatus] = None
        self._lock = asyncio.Lock()

    def _is_fresh(self, max_age_seconds: float) -> bool:
        if self._status is None:
            return False
        age = (self._clock() - self._status.checked_at).total_seconds()
        return age < max_age_seconds

    async def get_status(self, max_age_seconds: Optional[float] = None) -> GatewayStatus:
        """Снимок из кэша, если он свежее max_age_seconds, иначе синхронная проверка."""
        if max_age_seconds is None:
            max_age_seconds = settings.GATEWAY_STATUS_MAX_AGE
        if self._is_fresh(max_age_seconds):
            return self._status
        async with self._lock:
            # Пока ждали блокировку, снимок мог обновить параллельный вызов
            if self._is_fresh(max_age_seconds):
                return self._status
            return await self._refresh()

    async def force_check(self) -> GatewayStatus:
        """Принудительная проверка состояния шлюза."""
        async with self._lock:
            return await self._refresh()

    async def _refresh(self) -> GatewayStatus:
        status = await self._client.check_status()
        previous = self._status
        self._status = status
        if previous is None or previous.connected != status.connected:
            logger.info(
                "Gateway status: connected=%s identity=%s error=%s",
                status.connected, status.identity, status.error,
            )
        return status

    async def wait_until_connected(self, attempts: int = 5, wait_seconds: float = 2.0) -> GatewayStatus:
        """
        Опрашивает шлюз, пока он не сообщит connected=True, но не более attempts раз.
        Возвращает последний полученный снимок.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(wait_seconds),
            retry=retry_if_result(lambda status: not status.connected),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        status = await retrying(self.force_check)
        if not status.connected:
            logger.warning("Gateway still disconnected after %d checks: %s", attempts, status.error)
        return status


# Глобальный экземпляр монитора
_monitor: Optional[ConnectionMonitor] = None


def get_connection_monitor() -> ConnectionMonitor:
    """Получает глобальный монитор соединения."""
    global _monitor
    if _monitor is None:
        _monitor = ConnectionMonitor(get_gateway_client())
    return _monitor


def reset_connection_monitor() -> None:
    """Сбрасывает глобальный монитор (при закрытии клиента шлюза)."""
    global _monitor
    _monitor = None
