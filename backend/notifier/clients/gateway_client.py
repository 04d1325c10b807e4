"""
HTTP клиент внешнего шлюза сообщений.

Каждый вызов делает ровно одну попытку. Ответы приводятся к единому виду
DeliveryResult; ошибки транспорта и некорректные ответы не выбрасываются
наружу, а возвращаются как success=False с текстом ошибки. Повторы
выполняет вызывающий код (диспетчер).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

import httpx

from notifier.core.config import settings
from notifier.core.phone import normalize_phone
from notifier.core.utils import utcnow

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "timeout"


class GatewayResponseError(Exception):
    """Ответ шлюза не удалось разобрать."""


@dataclass
class DeliveryResult:
    """Результат одной попытки доставки."""
    success: bool
    provider_message_id: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(cls, error_message: str) -> "DeliveryResult":
        return cls(success=False, error_message=error_message)


@dataclass
class GatewayStatus:
    """Снимок состояния шлюза. Пересчитывается при каждой проверке."""
    connected: bool
    identity: Optional[str] = None
    checked_at: datetime = field(default_factory=utcnow)
    error: Optional[str] = None


def _describe_error(exc: Exception) -> str:
    """Текст ошибки, различающий таймаут, сетевую ошибку и плохой ответ."""
    if isinstance(exc, httpx.TimeoutException):
        return TIMEOUT_ERROR
    if isinstance(exc, httpx.HTTPStatusError):
        detail = _error_detail(exc.response)
        status_text = f"HTTP {exc.response.status_code}"
        return f"{status_text}: {detail}" if detail else status_text
    if isinstance(exc, httpx.TransportError):
        return f"connection error: {exc}" if str(exc) else f"connection error: {type(exc).__name__}"
    if isinstance(exc, (GatewayResponseError, ValueError)):
        return f"malformed response: {exc}"
    return f"{type(exc).__name__}: {exc}"


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] if response.text else None
    if isinstance(body, dict):
        return body.get("error") or body.get("message") or body.get("detail")
    return None


def _message_id(body: dict) -> Optional[str]:
    value = body.get("messageId") or body.get("message_id") or body.get("id")
    return str(value) if value is not None else None


def _to_result(body: Any) -> DeliveryResult:
    """Разбор ответа на одиночную операцию ({success, message?, messageId?})."""
    if not isinstance(body, dict):
        return DeliveryResult.failure("malformed response: expected JSON object")
    if body.get("success") is True:
        return DeliveryResult(success=True, provider_message_id=_message_id(body))
    error = body.get("error") or body.get("message") or "gateway reported failure"
    return DeliveryResult.failure(str(error))


class GatewayClient:
    """Клиент для HTTP API шлюза сообщений."""

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        api_key_header: str = None,
        status_timeout: float = None,
        send_timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.base_url = (base_url or settings.GATEWAY_BASE_URL).rstrip("/")
        # Ensure URL has protocol
        if self.base_url and not self.base_url.startswith(("http://", "https://")):
            self.base_url = "http://" + self.base_url
        self.api_key = settings.GATEWAY_API_KEY if api_key is None else api_key
        self.api_key_header = api_key_header or settings.GATEWAY_API_KEY_HEADER
        self.status_timeout = status_timeout or settings.GATEWAY_STATUS_TIMEOUT
        self.send_timeout = send_timeout or settings.GATEWAY_SEND_TIMEOUT
        self._transport = transport
        self._clock = clock
        self._client: Optional[httpx.AsyncClient] = None
        logger.info("Gateway client initialized with base URL: %s", self.base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Получает или создаёт HTTP клиент."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers[self.api_key_header] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.send_timeout,
                headers=headers,
                transport=self._transport,
            )
            logger.debug("Created new gateway HTTP client")
        return self._client

    async def close(self):
        """Закрывает HTTP клиент."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("Gateway HTTP client closed")
        self._client = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Одна попытка запроса. Исключения httpx пробрасываются вызывающему методу."""
        client = await self._get_client()
        logger.debug("Gateway %s %s", method, endpoint)
        response = await client.request(
            method=method,
            url=endpoint,
            json=json_data,
            timeout=timeout or self.send_timeout,
        )
        response.raise_for_status()
        return response.json()

    async def check_status(self) -> GatewayStatus:
        """GET /status с таймаутом status_timeout. Никогда не выбрасывает исключение."""
        try:
            body = await self._request("GET", "/status", timeout=self.status_timeout)
            if not isinstance(body, dict):
                raise GatewayResponseError("expected JSON object")
        except Exception as e:
            error = _describe_error(e)
            logger.warning("Gateway status check failed: %s", error)
            return GatewayStatus(connected=False, checked_at=self._clock(), error=error)

        connected = bool(body.get("connected")) or body.get("status") == "connected"
        identity = body.get("phoneNumber") or body.get("phone_number")
        return GatewayStatus(
            connected=connected,
            identity=str(identity) if identity else None,
            checked_at=self._clock(),
            error=None if connected else (body.get("error") or "gateway reports disconnected"),
        )

    async def send_one(self, phone: str, message: str) -> DeliveryResult:
        """POST /send-message: отправка одному получателю."""
        phone_number = normalize_phone(phone)
        try:
            body = await self._request(
                "POST",
                "/send-message",
                json_data={"phoneNumber": phone_number, "message": message},
            )
        except Exception as e:
            error = _describe_error(e)
            logger.error("Send to %s failed: %s", phone_number, error)
            return DeliveryResult.failure(error)
        result = _to_result(body)
        if not result.success:
            logger.error("Gateway rejected message to %s: %s", phone_number, result.error_message)
        return result

    async def send_bulk(self, items: Sequence[tuple[str, str]]) -> list[DeliveryResult]:
        """
        POST /send-bulk. Возвращает ровно len(items) результатов в порядке входа.
        Частичный отказ: нормальный исход, смотреть нужно каждый элемент.
        """
        if not items:
            return []
        messages = [
            {"phoneNumber": normalize_phone(phone), "message": message}
            for phone, message in items
        ]
        try:
            body = await self._request("POST", "/send-bulk", json_data={"messages": messages})
            if not isinstance(body, dict):
                raise GatewayResponseError("expected JSON object")
        except Exception as e:
            error = _describe_error(e)
            logger.error("Bulk send of %d messages failed: %s", len(items), error)
            return [DeliveryResult.failure(error) for _ in items]

        if body.get("success") is not True:
            error = str(body.get("error") or body.get("message") or "gateway reported failure")
            return [DeliveryResult.failure(error) for _ in items]

        raw_results = body.get("results")
        if not isinstance(raw_results, list):
            raw_results = []
        results = [_to_result(raw) for raw in raw_results[: len(items)]]
        missing = len(items) - len(results)
        if missing:
            logger.warning("Gateway returned %d results for %d messages", len(results), len(items))
            results.extend(DeliveryResult.failure("missing result from gateway") for _ in range(missing))
        return results

    async def schedule_remote(self, phone: str, message: str, delay_minutes: int) -> DeliveryResult:
        """POST /schedule-reminder: отложенная отправка силами самого шлюза."""
        phone_number = normalize_phone(phone)
        try:
            body = await self._request(
                "POST",
                "/schedule-reminder",
                json_data={"phoneNumber": phone_number, "message": message, "delay": delay_minutes},
            )
        except Exception as e:
            error = _describe_error(e)
            logger.error("Remote scheduling for %s failed: %s", phone_number, error)
            return DeliveryResult.failure(error)
        return _to_result(body)

    async def sync_notifications(self) -> DeliveryResult:
        """POST /sync-notifications: запустить внутреннюю обработку очереди на стороне шлюза."""
        try:
            body = await self._request("POST", "/sync-notifications", json_data={})
        except Exception as e:
            error = _describe_error(e)
            logger.error("Gateway sync failed: %s", error)
            return DeliveryResult.failure(error)
        return _to_result(body)


# Глобальный экземпляр клиента
_gateway_client: Optional[GatewayClient] = None


def get_gateway_client() -> GatewayClient:
    """Получает глобальный экземпляр клиента шлюза."""
    global _gateway_client
    if _gateway_client is None:
        _gateway_client = GatewayClient()
    return _gateway_client


async def close_gateway_client():
    """Закрывает глобальный клиент шлюза."""
    global _gateway_client
    if _gateway_client:
        await _gateway_client.close()
        _gateway_client = None
