"""
API endpoints.
"""
from fastapi import APIRouter

from notifier.api import notifications, gateway, dispatch

# Главный роутер API
api_router = APIRouter(prefix="/api/v1")

# Подключаем все модули
api_router.include_router(notifications.router)
api_router.include_router(gateway.router)
api_router.include_router(dispatch.router)

__all__ = ["api_router"]
