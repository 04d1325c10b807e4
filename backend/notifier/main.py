"""
Главный файл FastAPI приложения.
"""
import asyncio
import logging
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from notifier.core.config import settings
from notifier.core.database import get_db
from notifier.core.exceptions import AppException
from notifier.api import api_router
from notifier.clients.gateway_client import close_gateway_client
from notifier.services.connection_monitor import reset_connection_monitor
from notifier.services.dispatch_loop import run_dispatch_loop

# Настройка логирования
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_TITLE,
    description="API планирования и доставки уведомлений пациентам через шлюз сообщений",
    version="1.0.0",
)

_dispatch_task: asyncio.Task | None = None


@app.exception_handler(AppException)
async def app_exception_handler(request, exc: AppException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code},
    )


# CORS middleware: разрешённые домены из переменной окружения
origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health check endpoint
@app.get("/health")
def health(db: Session = Depends(get_db)):
    """Health check endpoint with database verification."""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": str(e)},
        )

# Подключаем API роутер
app.include_router(api_router)


@app.on_event("startup")
async def startup_event():
    """Действия при старте приложения."""
    global _dispatch_task
    logger.info("Application startup")
    if settings.DISPATCH_LOOP_INTERVAL > 0:
        _dispatch_task = asyncio.create_task(run_dispatch_loop(settings.DISPATCH_LOOP_INTERVAL))


@app.on_event("shutdown")
async def shutdown_event():
    """Действия при остановке приложения."""
    global _dispatch_task
    if _dispatch_task is not None:
        _dispatch_task.cancel()
        _dispatch_task = None
    await close_gateway_client()
    reset_connection_monitor()
    logger.info("Application shutdown")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
