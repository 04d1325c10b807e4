"""
Шаблоны сообщений и подстановка переменных.

Политика подстановки fail-open: плейсхолдер ``{{key}}``, для которого нет
значения, остаётся в тексте как есть. Отсутствующая переменная ухудшает
текст, но никогда не блокирует отправку.
"""
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from notifier.core.config import settings

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{([^{}]+)\}\}")


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """
    Подставляет значения вместо всех вхождений {{key}}.

    Ключи сравниваются буквально, без вложенных шаблонов и экранирования.
    None подставляется как пустая строка.
    """
    if not template:
        return template or ""

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_substitute, template)


def find_placeholders(template: str) -> list[str]:
    """Список уникальных имён плейсхолдеров в порядке появления."""
    seen: list[str] = []
    for key in _PLACEHOLDER.findall(template or ""):
        if key not in seen:
            seen.append(key)
    return seen


def missing_variables(template: str, variables: Mapping[str, Any]) -> list[str]:
    """Плейсхолдеры шаблона, для которых нет значения."""
    return [key for key in find_placeholders(template) if key not in variables]


@dataclass(frozen=True)
class MessageTemplate:
    """Заголовок и текст сообщения для одного типа уведомления."""
    title: str
    body: str


DEFAULT_TEMPLATES: dict[str, MessageTemplate] = {
    "appointment_reminder": MessageTemplate(
        title="Recordatorio de Cita",
        body="Hola {{patient_name}}, te recordamos tu cita para el {{date}} a las {{time}}.",
    ),
    "payment_due": MessageTemplate(
        title="Recordatorio de Pago",
        body="Hola {{patient_name}}, tienes un pago pendiente de ${{amount}}.",
    ),
    "document_ready": MessageTemplate(
        title="Documento Listo",
        body="Hola {{patient_name}}, tu {{document_name}} está listo para revisión.",
    ),
    "followup": MessageTemplate(
        title="Seguimiento",
        body="Hola {{patient_name}}, ¿cómo te has sentido después de nuestra sesión?",
    ),
    "welcome": MessageTemplate(
        title="Bienvenida",
        body="¡Bienvenido/a {{patient_name}}! Estamos aquí para acompañarte en tu proceso.",
    ),
    "custom": MessageTemplate(
        title="Notificación",
        body="{{message}}",
    ),
}


class TemplateCatalog:
    """Каталог шаблонов по notification_type."""

    def __init__(self, templates: Optional[Mapping[str, MessageTemplate]] = None):
        self._templates: dict[str, MessageTemplate] = dict(
            DEFAULT_TEMPLATES if templates is None else templates
        )

    @classmethod
    def from_file(cls, path: str) -> "TemplateCatalog":
        """
        Загружает каталог из JSON-файла вида
        {"payment_due": {"title": "...", "body": "..."}}.
        Типы, отсутствующие в файле, берутся из каталога по умолчанию.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        templates = dict(DEFAULT_TEMPLATES)
        for notification_type, entry in data.items():
            templates[notification_type] = MessageTemplate(title=entry["title"], body=entry["body"])
        logger.info("Loaded %d message templates from %s", len(data), path)
        return cls(templates)

    def get(self, notification_type: str) -> Optional[MessageTemplate]:
        return self._templates.get(notification_type)

    def __contains__(self, notification_type: str) -> bool:
        return notification_type in self._templates


_catalog: Optional[TemplateCatalog] = None


def get_template_catalog() -> TemplateCatalog:
    """Глобальный каталог шаблонов (из NOTIFICATION_TEMPLATES_FILE, если задан)."""
    global _catalog
    if _catalog is None:
        if settings.NOTIFICATION_TEMPLATES_FILE:
            _catalog = TemplateCatalog.from_file(settings.NOTIFICATION_TEMPLATES_FILE)
        else:
            _catalog = TemplateCatalog()
    return _catalog
