"""
Конфигурация приложения.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    """Читает булеву переменную окружения (1/true/yes/on)."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Настройки приложения."""

    # Database: без дефолта, приложение не запустится без БД
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # FastAPI
    APP_TITLE: str = "Notification Dispatch Service"

    # API Security: без дефолтов
    API_KEY: str = os.getenv("API_KEY", "")
    # Bearer-токен для внешнего планировщика (cron), вызывающего /dispatch/process
    DISPATCH_TRIGGER_TOKEN: str = os.getenv("DISPATCH_TRIGGER_TOKEN", "")

    # CORS: по умолчанию пустой (ничего не разрешено)
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "")

    # Messaging gateway
    GATEWAY_BASE_URL: str = os.getenv("GATEWAY_BASE_URL", "")
    GATEWAY_API_KEY: str = os.getenv("GATEWAY_API_KEY", "")
    GATEWAY_API_KEY_HEADER: str = os.getenv("GATEWAY_API_KEY_HEADER", "X-API-Key")
    GATEWAY_STATUS_TIMEOUT: float = float(os.getenv("GATEWAY_STATUS_TIMEOUT", "8"))
    GATEWAY_SEND_TIMEOUT: float = float(os.getenv("GATEWAY_SEND_TIMEOUT", "15"))
    GATEWAY_STATUS_MAX_AGE: int = int(os.getenv("GATEWAY_STATUS_MAX_AGE", "30"))
    GATEWAY_REMOTE_SCHEDULING: bool = _env_bool("GATEWAY_REMOTE_SCHEDULING")

    # Dispatch
    DISPATCH_BATCH_SIZE: int = int(os.getenv("DISPATCH_BATCH_SIZE", "50"))
    # Пауза между отправками внутри одного прохода (секунды)
    DISPATCH_SEND_INTERVAL: float = float(os.getenv("DISPATCH_SEND_INTERVAL", "0"))
    # 0: встроенный цикл выключен, проход запускает внешний cron
    DISPATCH_LOOP_INTERVAL: int = int(os.getenv("DISPATCH_LOOP_INTERVAL", "0"))

    # Шаблоны сообщений: JSON-файл, переопределяющий каталог по умолчанию
    NOTIFICATION_TEMPLATES_FILE: str = os.getenv("NOTIFICATION_TEMPLATES_FILE", "")


settings = Settings()
