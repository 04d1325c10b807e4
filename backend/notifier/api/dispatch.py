"""
Триггер обработки запланированных уведомлений для внешнего планировщика.
Идемпотентен: повторный вызов обработает только ещё не захваченные записи.
"""
from fastapi import APIRouter, Depends

from notifier.api.dependencies import get_dispatcher
from notifier.core.security import verify_trigger_token
from notifier.schemas.notification import ProcessResponse
from notifier.services.dispatcher import Dispatcher

router = APIRouter(
    prefix="/dispatch",
    tags=["dispatch"],
    dependencies=[Depends(verify_trigger_token)],
)


@router.post("/process", response_model=ProcessResponse)
async def process_scheduled(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Обработать все наступившие pending-уведомления."""
    report = await dispatcher.process_scheduled_notifications()
    return ProcessResponse(
        success=report.success,
        processed=report.processed,
        failed=report.failed,
        skipped=report.skipped,
        total=report.total,
        gateway_connected=report.gateway_connected,
        message=report.message,
    )
