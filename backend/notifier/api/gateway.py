"""
API endpoints состояния шлюза сообщений.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from notifier.api.dependencies import get_dispatcher, get_gateway, get_monitor
from notifier.clients.gateway_client import GatewayClient, GatewayStatus
from notifier.core.security import verify_api_key
from notifier.schemas.gateway import GatewayStatusResponse, GatewaySyncResponse
from notifier.schemas.notification import ProcessResponse
from notifier.services.connection_monitor import ConnectionMonitor
from notifier.services.dispatcher import Dispatcher

router = APIRouter(
    prefix="/gateway",
    tags=["gateway"],
    dependencies=[Depends(verify_api_key)],
)


def _to_response(status: GatewayStatus) -> GatewayStatusResponse:
    return GatewayStatusResponse(
        connected=status.connected,
        identity=status.identity,
        checked_at=status.checked_at,
        error=status.error,
    )


@router.get("/status", response_model=GatewayStatusResponse)
async def get_gateway_status(
    max_age: Optional[int] = Query(None, ge=0),
    monitor: ConnectionMonitor = Depends(get_monitor),
):
    """Состояние шлюза из кэша (не старше max_age секунд)."""
    return _to_response(await monitor.get_status(max_age))


@router.post("/check", response_model=GatewayStatusResponse)
async def check_gateway(monitor: ConnectionMonitor = Depends(get_monitor)):
    """Принудительная проверка состояния шлюза."""
    return _to_response(await monitor.force_check())


@router.post("/reconnect", response_model=ProcessResponse)
async def reconnect_gateway(
    attempts: int = Query(5, ge=1, le=20),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Переподключение: дождаться шлюза и обработать накопившиеся уведомления."""
    status, report = await dispatcher.reconnect_all(attempts=attempts)
    if report is None:
        return ProcessResponse(
            success=False,
            processed=0,
            failed=0,
            gateway_connected=False,
            message=f"Gateway not connected: {status.error or 'unknown'}",
        )
    return ProcessResponse(
        success=report.success,
        processed=report.processed,
        failed=report.failed,
        skipped=report.skipped,
        total=report.total,
        gateway_connected=report.gateway_connected,
        message=report.message,
    )


@router.post("/sync", response_model=GatewaySyncResponse)
async def sync_gateway(gateway: GatewayClient = Depends(get_gateway)):
    """Запустить внутреннюю обработку очереди на стороне шлюза."""
    result = await gateway.sync_notifications()
    return GatewaySyncResponse(success=result.success, error_message=result.error_message)
