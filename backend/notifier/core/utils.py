"""
Утилиты приложения.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

# Часовой пояс клиники: в нём формируются дата и время в текстах напоминаний
BUENOS_AIRES_TZ = ZoneInfo("America/Argentina/Buenos_Aires")


def utcnow() -> datetime:
    """Текущее время в UTC без tzinfo (так время хранится в БД)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Приводит datetime к naive UTC. Naive значения считаются уже UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
